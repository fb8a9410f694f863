"""
RBAC guard placed in front of request handlers.

The guard resolves who is calling (IdentityResolver), what role they hold
(RoleResolver, with a fallback role when lookup fails) and evaluates the required
permission(s). It returns a GuardDecision instead of raising, so callers map each
outcome to a response themselves. Handlers wrapped with guard()/guard_any() only run
when the decision allows them, and find the caller's AccessContext on
request.state.access.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from fastapi import Request, status
from fastapi.responses import JSONResponse

from contracts_portal.core import rbac
from contracts_portal.core.audit import AuditEvent, AuditLogger
from contracts_portal.core.roles import Role, parse_role, role_level

logger = logging.getLogger(__name__)

INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
NOT_AUTHENTICATED = "Not authenticated"


def required_permissions(permissions: Sequence[str]) -> List[str]:
    """Permission list for an any-of or all-of check. An empty list is a configuration error."""
    required = list(permissions)
    if not required:
        raise ValueError("At least one permission is required")
    return required


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: Optional[str] = None


class IdentityResolver(Protocol):
    async def resolve(self, token: Optional[str]) -> Optional[Identity]:
        """Return the caller's identity, or None when unauthenticated."""
        ...


class RoleResolver(Protocol):
    async def resolve_role(self, identity: Identity) -> Optional[Role]:
        """Return the caller's role. None or an exception selects the fallback role."""
        ...


@dataclass(frozen=True)
class AccessContext:
    """Resolved caller plus permission helpers bound to their role."""

    identity: Identity
    role: Role

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def level(self) -> int:
        return role_level(self.role)

    @property
    def permissions(self) -> List[str]:
        return rbac.get_user_permissions(self.role)

    def can(self, permission: str) -> bool:
        return rbac.has_permission(self.role, permission)

    def can_any(self, permissions: Sequence[str]) -> bool:
        return rbac.has_any_permission(self.role, permissions)

    def can_all(self, permissions: Sequence[str]) -> bool:
        return rbac.has_all_permissions(self.role, permissions)

    def has_role_level(self, required_role) -> bool:
        return rbac.has_role_level(self.role, required_role)

    def can_manage(self, target_role) -> bool:
        return rbac.can_manage_role(self.role, target_role)


class GuardOutcome(str, Enum):
    ALLOWED = "allowed"
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission_denied"


@dataclass
class GuardDecision:
    outcome: GuardOutcome
    required: List[str]
    context: Optional[AccessContext] = None
    reason: str = ""
    dry_run: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome == GuardOutcome.ALLOWED

    @property
    def status_code(self) -> int:
        if self.outcome == GuardOutcome.UNAUTHENTICATED:
            return status.HTTP_401_UNAUTHORIZED
        if self.outcome == GuardOutcome.PERMISSION_DENIED:
            return status.HTTP_403_FORBIDDEN
        return status.HTTP_200_OK


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class RBACGuard:
    def __init__(
        self,
        identity_resolver: IdentityResolver,
        role_resolver: RoleResolver,
        fallback_role: Role = Role.GUEST,
        audit: Optional[AuditLogger] = None,
        enforcement: str = "enforce",
        expose_required: bool = False,
    ):
        self.identity_resolver = identity_resolver
        self.role_resolver = role_resolver
        self.fallback_role = fallback_role
        self.audit = audit
        self.enforcement = enforcement
        self.expose_required = expose_required

    async def resolve_context(self, token: Optional[str]) -> Optional[AccessContext]:
        try:
            identity = await self.identity_resolver.resolve(token)
        except Exception as e:
            logger.error(f"Identity resolution failed: {e}")
            return None
        if identity is None:
            return None
        return AccessContext(identity=identity, role=await self._resolve_role(identity))

    async def _resolve_role(self, identity: Identity) -> Role:
        try:
            role = parse_role(await self.role_resolver.resolve_role(identity))
        except Exception as e:
            logger.warning(
                f"Role lookup failed for user {identity.user_id}, using fallback role "
                f"{self.fallback_role.value}: {e}"
            )
            return self.fallback_role
        if role is None:
            logger.info(f"No usable role for user {identity.user_id}, using fallback role {self.fallback_role.value}")
            return self.fallback_role
        return role

    async def evaluate(
        self, token: Optional[str], permission: str, path: Optional[str] = None, method: Optional[str] = None
    ) -> GuardDecision:
        return await self._evaluate(token, [permission], require_all=True, path=path, method=method)

    async def evaluate_any(
        self, token: Optional[str], permissions: Sequence[str], path: Optional[str] = None, method: Optional[str] = None
    ) -> GuardDecision:
        return await self._evaluate(token, required_permissions(permissions), require_all=False, path=path, method=method)

    async def evaluate_all(
        self, token: Optional[str], permissions: Sequence[str], path: Optional[str] = None, method: Optional[str] = None
    ) -> GuardDecision:
        return await self._evaluate(token, required_permissions(permissions), require_all=True, path=path, method=method)

    async def _evaluate(
        self,
        token: Optional[str],
        permissions: List[str],
        require_all: bool,
        path: Optional[str],
        method: Optional[str],
    ) -> GuardDecision:
        context = await self.resolve_context(token)
        if context is None:
            return GuardDecision(
                outcome=GuardOutcome.UNAUTHENTICATED,
                required=permissions,
                reason="User not authenticated",
            )

        granted = context.can_all(permissions) if require_all else context.can_any(permissions)
        if granted:
            return GuardDecision(outcome=GuardOutcome.ALLOWED, required=permissions, context=context, reason="OK")

        dry_run = self.enforcement == "dry-run"
        label = "WOULD_BLOCK" if dry_run else "DENY"
        logger.warning(
            f"RBAC {label}: user={context.user_id} role={context.role.value} "
            f"required={'+' if require_all else '|'}{','.join(permissions)} path={path}"
        )
        self._audit_denial(context, permissions, "would_block" if dry_run else "deny", path, method)

        if dry_run:
            return GuardDecision(
                outcome=GuardOutcome.ALLOWED,
                required=permissions,
                context=context,
                reason="Dry-run: permission missing",
                dry_run=True,
            )
        return GuardDecision(
            outcome=GuardOutcome.PERMISSION_DENIED,
            required=permissions,
            context=context,
            reason="NO_BASE_PERMISSION",
        )

    def _audit_denial(
        self, context: AccessContext, permissions: List[str], decision: str, path: Optional[str], method: Optional[str]
    ) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record(AuditEvent(
                event_type="permission_check",
                user_id=context.user_id,
                role=context.role.value,
                permissions=permissions,
                decision=decision,
                reason="NO_BASE_PERMISSION",
                path=path,
                method=method,
            ))
        except Exception as e:
            logger.warning(f"Failed to submit audit event: {e}")

    def denial_message(self, decision: GuardDecision) -> str:
        if decision.outcome == GuardOutcome.UNAUTHENTICATED:
            return NOT_AUTHENTICATED
        if self.expose_required:
            return f"{INSUFFICIENT_PERMISSIONS}. Required: {', '.join(decision.required)}"
        return INSUFFICIENT_PERMISSIONS

    def guard(self, permission: str, handler: Callable[..., Awaitable]) -> Callable[..., Awaitable]:
        return self._wrap(handler, [permission], require_all=True)

    def guard_any(self, permissions: Sequence[str], handler: Callable[..., Awaitable]) -> Callable[..., Awaitable]:
        return self._wrap(handler, required_permissions(permissions), require_all=False)

    def _wrap(self, handler: Callable[..., Awaitable], permissions: List[str], require_all: bool):
        @wraps(handler)
        async def wrapped(request: Request, *args, **kwargs):
            decision = await self._evaluate(
                bearer_token(request),
                permissions,
                require_all=require_all,
                path=request.url.path,
                method=request.method,
            )
            if not decision.allowed:
                return JSONResponse(
                    status_code=decision.status_code,
                    content={"success": False, "error": self.denial_message(decision)},
                )
            request.state.access = decision.context
            return await handler(request, *args, **kwargs)

        return wrapped
