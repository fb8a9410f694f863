"""
Inbound webhook verification.

A delivery is trusted only after three checks, in this order:

1. Signature: HMAC-SHA256 of the raw request body with the shared secret, compared
   in constant time. The body is never parsed or re-encoded before this step.
2. Freshness: the x-timestamp header must be within the tolerance window (and not
   too far in the future), which bounds how long a captured request can be replayed.
3. Idempotency: the delivery's key is atomically recorded in the idempotency store.
   A key that is already recorded short-circuits as a successful duplicate.

The verifier never raises for a bad delivery. It returns a WebhookVerification whose
outcome the route maps to a response. Store failures and timeouts produce
STORE_UNAVAILABLE; they are never read as "not a duplicate". When the commit times
out or fails it may still have written the key, so the verifier releases it in the
background, keyed to this delivery's owner token, and the sender's retry is processed.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, Optional, Set, Union

from fastapi import status

from contracts_portal.core.idempotency import Clock, IdempotencyStore, IdempotencyStoreError, utcnow

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-timestamp"
IDEMPOTENCY_HEADER = "x-idempotency-key"
SIGNATURE_PREFIX = "sha256="

# Unix timestamps at or above this are taken to be milliseconds
_MILLISECONDS_THRESHOLD = 10 ** 12


class VerificationOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_TIMESTAMP = "stale_or_invalid_timestamp"
    INVALID_PAYLOAD = "invalid_payload"
    STORE_UNAVAILABLE = "store_unavailable"


_STATUS_CODES = {
    VerificationOutcome.ACCEPTED: status.HTTP_200_OK,
    VerificationOutcome.DUPLICATE: status.HTTP_200_OK,
    VerificationOutcome.INVALID_SIGNATURE: status.HTTP_401_UNAUTHORIZED,
    VerificationOutcome.INVALID_TIMESTAMP: status.HTTP_401_UNAUTHORIZED,
    VerificationOutcome.INVALID_PAYLOAD: status.HTTP_400_BAD_REQUEST,
    VerificationOutcome.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@dataclass(frozen=True)
class WebhookRequest:
    body: bytes
    signature: Optional[str]
    timestamp: Optional[str]
    idempotency_key: Optional[str]
    source: str = "default"


@dataclass
class WebhookVerification:
    outcome: VerificationOutcome
    idempotency_key: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    detail: str = ""
    owner: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.outcome in (VerificationOutcome.ACCEPTED, VerificationOutcome.DUPLICATE)

    @property
    def idempotent(self) -> bool:
        return self.outcome == VerificationOutcome.DUPLICATE

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.outcome]

    @property
    def error_code(self) -> Optional[str]:
        return None if self.verified else self.outcome.value


def compute_signature(body: Union[bytes, str], secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of the raw body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: Union[bytes, str], signature: Optional[str], secret: Optional[str]) -> bool:
    if not signature or not secret:
        return False
    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8"))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse unix seconds, unix milliseconds or ISO-8601. None when missing or malformed."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        number = float(value)
    except ValueError:
        number = None
    if number is not None:
        if not math.isfinite(number):
            return None
        if abs(number) >= _MILLISECONDS_THRESHOLD:
            number = number / 1000
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_fresh(timestamp: datetime, now: datetime, tolerance: timedelta, clock_skew: timedelta) -> bool:
    age = now - timestamp
    return -clock_skew <= age <= tolerance


class WebhookVerifier:
    def __init__(
        self,
        secret: str,
        store: IdempotencyStore,
        tolerance_seconds: int = 300,
        clock_skew_seconds: int = 30,
        idempotency_ttl_seconds: int = 86400,
        store_timeout_seconds: float = 2.0,
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("Webhook secret must not be empty")
        self.secret = secret
        self.store = store
        self.tolerance = timedelta(seconds=tolerance_seconds)
        self.clock_skew = timedelta(seconds=clock_skew_seconds)
        self.ttl = timedelta(seconds=idempotency_ttl_seconds)
        self.store_timeout = store_timeout_seconds
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    async def verify(self, request: WebhookRequest) -> WebhookVerification:
        if not verify_signature(request.body, request.signature, self.secret):
            logger.warning(f"Webhook from {request.source} rejected: invalid signature")
            return WebhookVerification(VerificationOutcome.INVALID_SIGNATURE, detail="Signature mismatch")

        now = self._clock()
        timestamp = parse_timestamp(request.timestamp)
        if timestamp is None or not is_fresh(timestamp, now, self.tolerance, self.clock_skew):
            logger.warning(
                f"Webhook from {request.source} rejected: stale or invalid timestamp {request.timestamp!r}"
            )
            return WebhookVerification(VerificationOutcome.INVALID_TIMESTAMP, detail="Timestamp outside tolerance")

        key = self.scoped_key(request)

        try:
            payload = json.loads(request.body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning(f"Webhook from {request.source} rejected: body is not a JSON object (key={key})")
            return WebhookVerification(VerificationOutcome.INVALID_PAYLOAD, idempotency_key=key, detail="Body must be a JSON object")

        owner = uuid.uuid4().hex
        commit: Optional[asyncio.Future] = None
        try:
            existing = await asyncio.wait_for(self.store.get(key), timeout=self.store_timeout)
            if existing is not None and not existing.is_expired(now):
                logger.info(f"Webhook {key} already processed at {existing.processed_at.isoformat()}")
                return WebhookVerification(VerificationOutcome.DUPLICATE, idempotency_key=key, detail="Already processed")

            # Shielded so a timeout leaves the write running and its outcome observable
            commit = asyncio.ensure_future(self.store.set_if_absent(key, now, self.ttl, owner=owner))
            accepted = await asyncio.wait_for(asyncio.shield(commit), timeout=self.store_timeout)
        except asyncio.TimeoutError:
            if commit is not None:
                self._schedule(self._release_after(commit, key, owner))
            logger.error(f"Idempotency store timed out after {self.store_timeout}s for webhook {key}")
            return WebhookVerification(VerificationOutcome.STORE_UNAVAILABLE, idempotency_key=key, detail="Idempotency store timeout")
        except IdempotencyStoreError as e:
            if commit is not None:
                self._schedule(self._release_after(commit, key, owner))
            logger.error(f"Idempotency store unavailable for webhook {key}: {e}")
            return WebhookVerification(VerificationOutcome.STORE_UNAVAILABLE, idempotency_key=key, detail="Idempotency store unavailable")

        if not accepted:
            logger.info(f"Webhook {key} lost the race to a concurrent delivery")
            return WebhookVerification(VerificationOutcome.DUPLICATE, idempotency_key=key, detail="Already processed")

        return WebhookVerification(VerificationOutcome.ACCEPTED, idempotency_key=key, payload=payload, owner=owner)

    async def release(self, key: str, owner: Optional[str] = None) -> bool:
        """Forget a committed key so the sender's retry is processed. False if the store failed."""
        try:
            await asyncio.wait_for(self.store.release(key, owner=owner), timeout=self.store_timeout)
            return True
        except (asyncio.TimeoutError, IdempotencyStoreError) as e:
            logger.error(f"Failed to release idempotency key {key}: {e}")
            return False

    async def flush(self) -> None:
        """Wait for background releases (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _release_after(self, commit: asyncio.Future, key: str, owner: str) -> None:
        try:
            recorded = await commit
        except IdempotencyStoreError:
            # A failed write may still have landed
            recorded = True
        if recorded and await self.release(key, owner):
            logger.info(f"Released idempotency key {key} after an unconfirmed commit")

    @staticmethod
    def scoped_key(request: WebhookRequest) -> str:
        key = (request.idempotency_key or "").strip()
        if not key:
            # No key supplied: byte-identical redeliveries share a signature
            signature = (request.signature or "").strip().lower()
            if signature.startswith(SIGNATURE_PREFIX):
                signature = signature[len(SIGNATURE_PREFIX):]
            key = f"sig:{signature}"
        return f"{request.source}:{key}"
