"""
Core dependencies for route protection and webhook verification.

This is the composition root: Supabase-backed collaborators are built here and
handed to the guard and verifier, which never reach for clients themselves.
Tests replace any of these through app.dependency_overrides.
"""

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from supabase import Client
from typing import List, Optional
import logging

from contracts_portal.config import Settings, get_settings
from contracts_portal.core.audit import AuditLogger, LoggingAuditSink, SupabaseAuditSink
from contracts_portal.core.guard import (
    AccessContext,
    GuardDecision,
    IdentityResolver,
    RBACGuard,
    RoleResolver,
    required_permissions,
)
from contracts_portal.core.idempotency import IdempotencyStore, InMemoryIdempotencyStore, SupabaseIdempotencyStore
from contracts_portal.core.roles import Role
from contracts_portal.core.webhooks import WebhookVerifier
from contracts_portal.database.supabase_client import get_supabase, get_supabase_service
from contracts_portal.modules.auth.service import AuthService, SupabaseIdentityResolver
from contracts_portal.modules.users.service import SupabaseRoleResolver, UserService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_user_service(supabase: Client = Depends(get_supabase_service)) -> UserService:
    return UserService(supabase)


def get_identity_resolver(auth_service: AuthService = Depends(get_auth_service)) -> IdentityResolver:
    return SupabaseIdentityResolver(auth_service)


def get_role_resolver(user_service: UserService = Depends(get_user_service)) -> RoleResolver:
    return SupabaseRoleResolver(user_service)


def build_audit_logger(settings: Settings) -> AuditLogger:
    sinks = [LoggingAuditSink()]
    if settings.supabase_url:
        sinks.append(SupabaseAuditSink(get_supabase_service()))
    return AuditLogger(sinks=sinks, enabled=settings.rbac_audit_enabled)


def get_audit_logger(request: Request, settings: Settings = Depends(get_settings)) -> AuditLogger:
    """App-scoped audit logger, created on first use."""
    audit = getattr(request.app.state, "audit_logger", None)
    if audit is None:
        audit = build_audit_logger(settings)
        request.app.state.audit_logger = audit
    return audit


def build_idempotency_store(settings: Settings) -> IdempotencyStore:
    if settings.idempotency_backend == "memory":
        if settings.is_production:
            logger.warning("In-memory idempotency store in production: duplicates are only detected per process")
        return InMemoryIdempotencyStore()
    return SupabaseIdempotencyStore(get_supabase_service())


def get_idempotency_store(request: Request, settings: Settings = Depends(get_settings)) -> IdempotencyStore:
    """App-scoped idempotency store, created on first use."""
    store = getattr(request.app.state, "idempotency_store", None)
    if store is None:
        store = build_idempotency_store(settings)
        request.app.state.idempotency_store = store
    return store


def build_webhook_verifier(settings: Settings, source: str, store: IdempotencyStore) -> Optional[WebhookVerifier]:
    """Verifier for a source, or None when no secret is configured for it."""
    secret = settings.secret_for(source)
    if not secret:
        return None
    return WebhookVerifier(
        secret=secret,
        store=store,
        tolerance_seconds=settings.webhook_timestamp_tolerance_seconds,
        clock_skew_seconds=settings.webhook_clock_skew_seconds,
        idempotency_ttl_seconds=settings.webhook_idempotency_ttl_seconds,
        store_timeout_seconds=settings.idempotency_store_timeout_seconds,
    )


def get_rbac_guard(
    identity_resolver: IdentityResolver = Depends(get_identity_resolver),
    role_resolver: RoleResolver = Depends(get_role_resolver),
    audit: AuditLogger = Depends(get_audit_logger),
    settings: Settings = Depends(get_settings),
) -> RBACGuard:
    return RBACGuard(
        identity_resolver=identity_resolver,
        role_resolver=role_resolver,
        fallback_role=Role(settings.rbac_fallback_role),
        audit=audit,
        enforcement=settings.effective_rbac_enforcement(),
        expose_required=settings.debug,
    )


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> Optional[str]:
    """Extract JWT token from Authorization header"""
    return credentials.credentials if credentials else None


def _enforce(request: Request, guard: RBACGuard, decision: GuardDecision) -> AccessContext:
    if not decision.allowed:
        headers = {"WWW-Authenticate": "Bearer"} if decision.status_code == status.HTTP_401_UNAUTHORIZED else None
        raise HTTPException(
            status_code=decision.status_code,
            detail=guard.denial_message(decision),
            headers=headers,
        )
    request.state.access = decision.context
    return decision.context


def require_permission(required_permission: str):
    """Factory function to create permission check dependency"""
    async def check_permission(
        request: Request,
        token: Optional[str] = Depends(get_bearer_token),
        guard: RBACGuard = Depends(get_rbac_guard),
    ) -> AccessContext:
        decision = await guard.evaluate(token, required_permission, path=request.url.path, method=request.method)
        return _enforce(request, guard, decision)
    return check_permission


def require_any_permission(permissions: List[str]):
    """Factory function to create a dependency passing when any one permission is held"""
    permissions = required_permissions(permissions)

    async def check_any_permission(
        request: Request,
        token: Optional[str] = Depends(get_bearer_token),
        guard: RBACGuard = Depends(get_rbac_guard),
    ) -> AccessContext:
        decision = await guard.evaluate_any(token, permissions, path=request.url.path, method=request.method)
        return _enforce(request, guard, decision)
    return check_any_permission


def require_all_permissions(permissions: List[str]):
    """Factory function to create a dependency passing only when every permission is held"""
    permissions = required_permissions(permissions)

    async def check_all_permissions(
        request: Request,
        token: Optional[str] = Depends(get_bearer_token),
        guard: RBACGuard = Depends(get_rbac_guard),
    ) -> AccessContext:
        decision = await guard.evaluate_all(token, permissions, path=request.url.path, method=request.method)
        return _enforce(request, guard, decision)
    return check_all_permissions


async def get_access_context(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
    guard: RBACGuard = Depends(get_rbac_guard),
) -> AccessContext:
    """Authenticated caller with their resolved role; no permission requirement."""
    context = await guard.resolve_context(token)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    request.state.access = context
    return context
