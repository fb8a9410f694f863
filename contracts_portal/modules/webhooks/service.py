import logging
from datetime import datetime, timezone
from supabase import Client
from typing import Any, Dict, Optional
from fastapi import HTTPException

logger = logging.getLogger(__name__)


class WebhookService:
    """Hands verified webhook payloads to the data layer."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def handle(self, source: str, payload: Dict[str, Any], idempotency_key: str) -> Optional[str]:
        """Record a verified delivery in webhook_events. Returns the event id."""
        try:
            result = self.supabase.table("webhook_events").insert({
                "source": source,
                "idempotency_key": idempotency_key,
                "event_type": payload.get("event") or payload.get("type"),
                "payload": payload,
                "received_at": datetime.now(timezone.utc).isoformat(),
            }).execute()
        except Exception as e:
            logger.error(f"Error recording webhook {idempotency_key}: {e}")
            raise HTTPException(status_code=500, detail="Failed to process webhook")

        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to process webhook")

        event_id = result.data[0].get("id")
        logger.info(f"Recorded webhook {idempotency_key} from {source} as event {event_id}")
        return event_id
