import asyncio
import hashlib
import logging
import time
from supabase import Client
from typing import Dict, Optional

from contracts_portal.core.guard import Identity

logger = logging.getLogger(__name__)

# In-memory cache for get_current_user to reduce Supabase auth calls (e.g. many parallel requests with same token)
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500


def clear_auth_cache() -> None:
    _AUTH_USER_CACHE.clear()


class AuthService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_current_user(self, token: str) -> Optional[Identity]:
        """Resolve a Supabase Auth JWT to an Identity. None when the token is invalid or expired."""
        cache_key = hashlib.sha256(token.encode()).hexdigest()
        now = time.monotonic()
        if cache_key in _AUTH_USER_CACHE:
            identity, expiry = _AUTH_USER_CACHE[cache_key]
            if now < expiry:
                return identity
            del _AUTH_USER_CACHE[cache_key]
        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            logger.info(f"Token rejected by Supabase Auth: {e}")
            return None
        if not user_response or not user_response.user:
            return None
        user = user_response.user
        identity = Identity(user_id=user.id, email=user.email)
        if len(_AUTH_USER_CACHE) < _AUTH_CACHE_MAX_SIZE:
            _AUTH_USER_CACHE[cache_key] = (identity, now + _AUTH_CACHE_TTL_SEC)
        return identity


class SupabaseIdentityResolver:
    """IdentityResolver backed by Supabase Auth."""

    def __init__(self, auth_service: AuthService):
        self.auth_service = auth_service

    async def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        return await asyncio.to_thread(self.auth_service.get_current_user, token)
