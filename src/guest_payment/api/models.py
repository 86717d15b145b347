"""Pydantic models for guest payment admin API requests and responses."""

from pydantic import BaseModel, Field


class SendPaymentLinkRequest(BaseModel):
    """Request body for generating and emailing a payment link."""

    email: str = Field(..., min_length=3, max_length=254, description="Payer email address")


class PaymentLinkResponse(BaseModel):
    order_id: int
    link: str = Field(..., description="Guest payment link carrying the raw token")
    email: str | None = None


class InvalidateLinkResponse(BaseModel):
    order_id: int
    invalidated: bool
