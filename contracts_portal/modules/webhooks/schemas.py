from pydantic import BaseModel


class WebhookAck(BaseModel):
    success: bool = True
    idempotent: bool
    idempotency_key: str


class WebhookErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
