"""RBAC guard: identity and role resolution, decisions, handler wrapping and audit."""
import json

import pytest
from fastapi import Request
from fastapi.responses import JSONResponse

from contracts_portal.core.audit import AuditLogger
from contracts_portal.core.guard import (
    INSUFFICIENT_PERMISSIONS,
    NOT_AUTHENTICATED,
    GuardOutcome,
    RBACGuard,
    bearer_token,
)
from contracts_portal.core.roles import Role
from tests.fakes import FailingAuditSink

pytestmark = pytest.mark.asyncio


def make_request(token=None, path="/api/v1/contracts", method="GET"):
    headers = []
    if token is not None:
        headers.append((b"authorization", f"Bearer {token}".encode()))
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "root_path": "",
        "scheme": "http",
        "server": ("testserver", 80),
        "query_string": b"",
        "headers": headers,
    })


@pytest.fixture
def guard(identity_resolver, role_resolver, audit_logger):
    return RBACGuard(identity_resolver, role_resolver, audit=audit_logger)


class RaisingIdentityResolver:
    async def resolve(self, token):
        raise RuntimeError("auth backend down")


class TestEvaluate:
    async def test_allowed(self, guard):
        decision = await guard.evaluate("token-manager", "contracts.approve")
        assert decision.outcome == GuardOutcome.ALLOWED
        assert decision.allowed
        assert decision.status_code == 200
        assert decision.context.role == Role.MANAGER
        assert decision.context.user_id == "u-manager"

    async def test_inherited_permission_is_allowed(self, guard):
        decision = await guard.evaluate("token-admin", "contracts.read")
        assert decision.allowed

    async def test_denied(self, guard):
        decision = await guard.evaluate("token-user", "contracts.delete")
        assert decision.outcome == GuardOutcome.PERMISSION_DENIED
        assert decision.status_code == 403
        assert decision.required == ["contracts.delete"]
        assert decision.context.role == Role.USER

    @pytest.mark.parametrize("token", [None, "", "token-unknown"])
    async def test_unauthenticated(self, guard, token):
        decision = await guard.evaluate(token, "dashboard.view")
        assert decision.outcome == GuardOutcome.UNAUTHENTICATED
        assert decision.status_code == 401
        assert decision.context is None

    async def test_identity_failure_is_unauthenticated(self, role_resolver):
        guard = RBACGuard(RaisingIdentityResolver(), role_resolver)
        decision = await guard.evaluate("token-admin", "dashboard.view")
        assert decision.outcome == GuardOutcome.UNAUTHENTICATED

    async def test_missing_role_uses_fallback(self, guard):
        decision = await guard.evaluate("token-norole", "dashboard.view")
        assert decision.allowed
        assert decision.context.role == Role.GUEST

        denied = await guard.evaluate("token-norole", "contracts.read")
        assert denied.outcome == GuardOutcome.PERMISSION_DENIED

    async def test_role_lookup_failure_uses_fallback(self, guard):
        decision = await guard.evaluate("token-broken", "contracts.read")
        assert decision.outcome == GuardOutcome.PERMISSION_DENIED
        assert decision.context.role == Role.GUEST

    async def test_configured_fallback_role(self, identity_resolver, role_resolver):
        guard = RBACGuard(identity_resolver, role_resolver, fallback_role=Role.VIEWER)
        decision = await guard.evaluate("token-broken", "contracts.read")
        assert decision.allowed
        assert decision.context.role == Role.VIEWER

    async def test_unrecognised_role_string_uses_fallback(self, identity_resolver, role_resolver):
        role_resolver.roles["u-user"] = "owner"
        guard = RBACGuard(identity_resolver, role_resolver)
        decision = await guard.evaluate("token-user", "documents.upload")
        assert decision.context.role == Role.GUEST
        assert not decision.allowed

    async def test_evaluate_any(self, guard):
        allowed = await guard.evaluate_any("token-user", ["contracts.delete", "documents.upload"])
        assert allowed.allowed

        denied = await guard.evaluate_any("token-user", ["contracts.delete", "users.roles"])
        assert denied.outcome == GuardOutcome.PERMISSION_DENIED
        assert denied.required == ["contracts.delete", "users.roles"]

    async def test_evaluate_all(self, guard):
        allowed = await guard.evaluate_all("token-user", ["documents.read", "documents.upload"])
        assert allowed.allowed

        denied = await guard.evaluate_all("token-user", ["documents.upload", "documents.delete"])
        assert denied.outcome == GuardOutcome.PERMISSION_DENIED

    async def test_empty_permission_list_is_rejected(self, guard):
        with pytest.raises(ValueError):
            await guard.evaluate_any("token-user", [])
        with pytest.raises(ValueError):
            await guard.evaluate_all("token-user", [])


class TestAccessContext:
    async def test_helpers_are_bound_to_role(self, guard):
        context = (await guard.evaluate("token-manager", "dashboard.view")).context
        assert context.level == 80
        assert context.can("contracts.approve")
        assert not context.can("contracts.delete")
        assert context.can_any(["contracts.delete", "promoters.create"])
        assert context.can_all(["promoters.create", "parties.create"])
        assert context.has_role_level("user")
        assert not context.has_role_level("admin")
        assert context.can_manage("user")
        assert not context.can_manage("manager")
        assert context.permissions == sorted(context.permissions)


class TestDryRun:
    async def test_would_block_is_allowed_and_audited(self, identity_resolver, role_resolver, audit_logger, audit_sink):
        guard = RBACGuard(identity_resolver, role_resolver, audit=audit_logger, enforcement="dry-run")
        decision = await guard.evaluate("token-user", "contracts.delete")
        assert decision.allowed
        assert decision.dry_run is True

        await audit_logger.flush()
        assert [e.decision for e in audit_sink.events] == ["would_block"]

    async def test_unauthenticated_still_rejected(self, identity_resolver, role_resolver):
        guard = RBACGuard(identity_resolver, role_resolver, enforcement="dry-run")
        decision = await guard.evaluate(None, "contracts.delete")
        assert decision.outcome == GuardOutcome.UNAUTHENTICATED


class TestAudit:
    async def test_denial_is_audited(self, guard, audit_logger, audit_sink):
        await guard.evaluate("token-user", "contracts.delete", path="/api/v1/contracts/1", method="DELETE")
        await audit_logger.flush()

        assert len(audit_sink.events) == 1
        event = audit_sink.events[0]
        assert event.event_type == "permission_check"
        assert event.user_id == "u-user"
        assert event.role == "user"
        assert event.permissions == ["contracts.delete"]
        assert event.decision == "deny"
        assert event.path == "/api/v1/contracts/1"
        assert event.method == "DELETE"
        assert event.to_dict()["created_at"]

    async def test_allowed_is_not_audited(self, guard, audit_logger, audit_sink):
        await guard.evaluate("token-admin", "contracts.delete")
        await audit_logger.flush()
        assert audit_sink.events == []

    async def test_failing_sink_does_not_change_denial(self, identity_resolver, role_resolver, audit_sink):
        audit = AuditLogger(sinks=[FailingAuditSink(), audit_sink])
        guard = RBACGuard(identity_resolver, role_resolver, audit=audit)

        decision = await guard.evaluate("token-user", "contracts.delete")
        await audit.flush()

        assert decision.outcome == GuardOutcome.PERMISSION_DENIED
        assert len(audit_sink.events) == 1

    async def test_disabled_audit(self, identity_resolver, role_resolver, audit_sink):
        audit = AuditLogger(sinks=[audit_sink], enabled=False)
        guard = RBACGuard(identity_resolver, role_resolver, audit=audit)
        await guard.evaluate("token-user", "contracts.delete")
        await audit.flush()
        assert audit_sink.events == []


class TestDenialMessage:
    async def test_generic_by_default(self, guard):
        decision = await guard.evaluate("token-user", "contracts.delete")
        assert guard.denial_message(decision) == INSUFFICIENT_PERMISSIONS

    async def test_required_permission_exposed_when_asked(self, identity_resolver, role_resolver):
        guard = RBACGuard(identity_resolver, role_resolver, expose_required=True)
        decision = await guard.evaluate("token-user", "contracts.delete")
        assert guard.denial_message(decision) == "Insufficient permissions. Required: contracts.delete"

    async def test_unauthenticated(self, guard):
        decision = await guard.evaluate(None, "contracts.delete")
        assert guard.denial_message(decision) == NOT_AUTHENTICATED


class TestGuardWrapper:
    async def test_handler_runs_with_access_context(self, guard):
        calls = []

        async def handler(request, contract_id):
            calls.append(contract_id)
            return {"role": request.state.access.role.value, "id": contract_id}

        wrapped = guard.guard("contracts.read", handler)
        result = await wrapped(make_request("token-viewer"), "c1")

        assert result == {"role": "viewer", "id": "c1"}
        assert calls == ["c1"]
        assert wrapped.__name__ == "handler"

    async def test_denied_handler_never_runs(self, guard):
        calls = []

        async def handler(request):
            calls.append(request)
            return {"ok": True}

        response = await guard.guard("contracts.delete", handler)(make_request("token-user"))

        assert isinstance(response, JSONResponse)
        assert response.status_code == 403
        assert json.loads(response.body) == {"success": False, "error": INSUFFICIENT_PERMISSIONS}
        assert calls == []

    async def test_unauthenticated_handler_never_runs(self, guard):
        async def handler(request):
            raise AssertionError("handler must not run")

        response = await guard.guard("dashboard.view", handler)(make_request())
        assert response.status_code == 401
        assert json.loads(response.body)["error"] == NOT_AUTHENTICATED

    async def test_guard_any(self, guard):
        async def handler(request):
            return "ok"

        wrapped = guard.guard_any(["contracts.delete", "documents.upload"], handler)
        assert await wrapped(make_request("token-user")) == "ok"

    async def test_guard_any_rejects_empty_list(self, guard):
        async def handler(request):
            return "ok"

        with pytest.raises(ValueError):
            guard.guard_any([], handler)

    async def test_denial_records_request_path(self, guard, audit_logger, audit_sink):
        async def handler(request):
            return "ok"

        await guard.guard("contracts.delete", handler)(make_request("token-user", "/api/v1/contracts/9", "DELETE"))
        await audit_logger.flush()
        assert audit_sink.events[0].path == "/api/v1/contracts/9"
        assert audit_sink.events[0].method == "DELETE"


class TestBearerToken:
    async def test_parses_bearer_header(self):
        assert bearer_token(make_request("abc")) == "abc"

    async def test_missing_or_other_scheme(self):
        assert bearer_token(make_request()) is None
        request = Request({
            "type": "http", "method": "GET", "path": "/", "query_string": b"",
            "headers": [(b"authorization", b"Basic dXNlcjpwYXNz")],
        })
        assert bearer_token(request) is None
