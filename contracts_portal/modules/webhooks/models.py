# Supabase tables: webhook_events, webhook_idempotency_keys
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py and core/idempotency.py

"""
Expected Supabase table structure:

webhook_events:
- id: uuid (primary key)
- source: text (not null) - e.g. "makecom", "payments"
- idempotency_key: text (not null, unique) - "<source>:<x-idempotency-key>"
- event_type: text (nullable) - taken from the payload's "event" or "type" field
- payload: jsonb (not null)
- received_at: timestamptz (not null)

webhook_idempotency_keys:
- key: text (primary key)
- processed_at: timestamptz (not null)
- expires_at: timestamptz (not null)
- processed_by: text (nullable) - owner token of the delivery that wrote the row; releases match on it
- rows past expires_at may be deleted at any time
"""
