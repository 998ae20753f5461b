from pydantic import BaseModel, Field


class PaymentReversalRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)
