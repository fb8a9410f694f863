"""
Pytest configuration and fixtures.

Supabase-backed collaborators are replaced with in-memory fakes; route tests drive
the real FastAPI app through httpx with dependency overrides.
"""
import httpx
import pytest
import pytest_asyncio

from contracts_portal.config import Settings, get_settings
from contracts_portal.core.audit import AuditLogger
from contracts_portal.core.dependencies import (
    get_audit_logger,
    get_identity_resolver,
    get_idempotency_store,
    get_role_resolver,
    get_user_service,
)
from contracts_portal.core.guard import Identity
from contracts_portal.core.idempotency import InMemoryIdempotencyStore
from contracts_portal.modules.users.service import UserService
from contracts_portal.modules.webhooks.routes import get_webhook_service
from tests.fakes import (
    FakeIdentityResolver,
    FakeRoleResolver,
    FakeSupabase,
    RecordingAuditSink,
    RecordingWebhookService,
)


USERS = {
    "token-super": Identity(user_id="u-super", email="root@example.com"),
    "token-admin": Identity(user_id="u-admin", email="admin@example.com"),
    "token-manager": Identity(user_id="u-manager", email="manager@example.com"),
    "token-user": Identity(user_id="u-user", email="user@example.com"),
    "token-viewer": Identity(user_id="u-viewer", email="viewer@example.com"),
    "token-norole": Identity(user_id="u-norole", email="norole@example.com"),
    "token-broken": Identity(user_id="u-broken", email="broken@example.com"),
}

ROLES = {
    "u-super": "super_admin",
    "u-admin": "admin",
    "u-manager": "manager",
    "u-user": "user",
    "u-viewer": "viewer",
    "u-norole": None,
    "u-broken": RuntimeError("profile lookup failed"),
}


@pytest.fixture
def identity_resolver():
    return FakeIdentityResolver(dict(USERS))


@pytest.fixture
def role_resolver():
    return FakeRoleResolver(dict(ROLES))


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def audit_logger(audit_sink):
    return AuditLogger(sinks=[audit_sink])


@pytest.fixture
def memory_store():
    return InMemoryIdempotencyStore()


@pytest.fixture
def fake_supabase():
    return FakeSupabase(unique={"webhook_idempotency_keys": ["key"]})


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        webhook_secret="whs_test",
        webhook_secrets={"payments": "whs_payments"},
        webhook_sources="makecom,payments,automation,unconfigured",
        idempotency_backend="memory",
        environment="test",
        debug=False,
    )


@pytest.fixture
def webhook_service():
    return RecordingWebhookService()


@pytest.fixture
def users_db():
    db = FakeSupabase()
    db.tables["users"] = [
        {"id": "u-super", "email": "root@example.com", "role": "super_admin"},
        {"id": "u-admin", "email": "admin@example.com", "role": "admin"},
        {"id": "u-manager", "email": "manager@example.com", "role": "manager"},
        {"id": "u-user", "email": "user@example.com", "role": "user"},
        {"id": "u-viewer", "email": "viewer@example.com", "role": "viewer"},
        {"id": "u-legacy", "email": "legacy@example.com", "role": "owner"},
    ]
    return db


@pytest.fixture
def app(test_settings, identity_resolver, role_resolver, audit_logger, memory_store, webhook_service, users_db):
    from contracts_portal.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_settings] = lambda: test_settings
    fastapi_app.dependency_overrides[get_identity_resolver] = lambda: identity_resolver
    fastapi_app.dependency_overrides[get_role_resolver] = lambda: role_resolver
    fastapi_app.dependency_overrides[get_audit_logger] = lambda: audit_logger
    fastapi_app.dependency_overrides[get_idempotency_store] = lambda: memory_store
    fastapi_app.dependency_overrides[get_webhook_service] = lambda: webhook_service
    fastapi_app.dependency_overrides[get_user_service] = lambda: UserService(users_db)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client

