"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class CreatePaymentIntentRequest(BaseModel):
    """Request schema for creating a payment intent."""

    amount: StrictInt = Field(..., description="Amount in minor units (minimum 50)")
    currency: str = Field(..., description="3-letter currency code (e.g., usd)")
    resource_id: UUID = Field(..., description="League or team being paid for")
    resource_type: Literal["league", "team"] = Field(
        default="league", description="Kind of resource being paid for"
    )
    description: Optional[str] = Field(
        default=None, max_length=500, description="Shown on the processor dashboard"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "amount": 2500,
                    "currency": "usd",
                    "resource_id": "123e4567-e89b-12d3-a456-426614174000",
                    "resource_type": "league",
                    "description": "Spring league registration",
                }
            ]
        }
    }


class PaymentIntentResponse(BaseModel):
    """Response schema for payment intent creation."""

    payment_id: UUID = Field(..., description="Local payment ID")
    processor_intent_id: str = Field(..., description="Stripe PaymentIntent ID")
    client_secret: Optional[str] = Field(
        default=None, description="Secret the client uses to confirm the payment"
    )
    amount: int = Field(..., description="Amount in minor units")
    currency: str = Field(..., description="Currency code")
    status: str = Field(..., description="Payment status")


class PaymentResponse(BaseModel):
    """Response schema for a stored payment."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    resource_id: UUID
    resource_type: str
    amount: int
    currency: str
    status: str
    created_at: datetime


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    model_config = ConfigDict(extra="allow")

    status: str = Field(..., description="processed, duplicate, ignored or needs_review")
    event_id: str = Field(..., description="Stripe event ID")
    event_type: Optional[str] = Field(default=None, description="Stripe event type")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status")
    message: Optional[str] = Field(default=None, description="Status message")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual check results")


class ErrorBody(BaseModel):
    code: str
    message: str
    type: str
    retryable: bool


class ErrorResponse(BaseModel):
    """Error envelope returned for payment errors."""

    error: ErrorBody
