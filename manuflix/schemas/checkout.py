"""
Checkout Request/Response Schemas
Pydantic models for plans, transactions, subscriptions and PIX sessions
"""
from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum


class ChargeStatus(str, Enum):
    """Normalized PIX charge status"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentMethodEnum(str, Enum):
    PIX = "pix"


class SessionState(str, Enum):
    """Checkout session lifecycle"""
    IDLE = "IDLE"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


def _to_decimal(value):
    # Stores hand back JSON numbers; go through str to keep 29.9 exact
    if isinstance(value, float):
        return Decimal(str(value))
    return value


# ==================== Records ====================

class SubscriptionPlanSchema(BaseModel):
    id: str
    name: str
    price: Decimal
    period: str = ""
    features: List[str] = Field(default_factory=list)
    popular: bool = False
    duration_days: int = 0
    is_lifetime: bool = False

    @field_validator("price", mode="before")
    @classmethod
    def _price_decimal(cls, value):
        return _to_decimal(value)

    @field_validator("features", mode="before")
    @classmethod
    def _features_list(cls, value):
        return value or []

    class Config:
        from_attributes = True


class TransactionSchema(BaseModel):
    id: str
    user_id: str
    plan_id: str
    amount: Decimal
    payment_method: PaymentMethodEnum = PaymentMethodEnum.PIX
    payment_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_decimal(cls, value):
        return _to_decimal(value)

    class Config:
        from_attributes = True


class UserSubscriptionSchema(BaseModel):
    id: str
    user_id: str
    plan_id: str
    transaction_id: Optional[str] = None
    is_active: bool = True
    is_lifetime: bool = False
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ==================== PIX ====================

class Customer(BaseModel):
    """Payer data as typed by the user; checked by validate_customer"""
    name: str = ""
    email: str = ""
    cpf: Optional[str] = None


class PixCharge(BaseModel):
    """Charge as returned by PushinPay"""
    id: str
    qrcode_image: str
    copy_paste: str
    expiration_date: Optional[datetime] = None
    status: Optional[str] = None


class PaymentSession(BaseModel):
    """Ephemeral data for one checkout attempt"""
    charge_id: str
    qrcode_image: str
    copy_paste: str
    expires_at: datetime
    status: ChargeStatus = ChargeStatus.PENDING
    transaction_id: str
    plan_id: str
    amount: Decimal


class SessionSnapshot(BaseModel):
    state: SessionState
    charge_id: Optional[str] = None
    qrcode_image: Optional[str] = None
    copy_paste: Optional[str] = None
    expires_at: Optional[datetime] = None
    seconds_left: int = 0
    time_left: str = "00:00"
    plan_id: Optional[str] = None
    amount: Optional[Decimal] = None
    error: Optional[str] = None


# ==================== API ====================

class PlanListResponse(BaseModel):
    success: bool
    plans: List[SubscriptionPlanSchema]


class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., description="Plan ID (monthly, quarterly, lifetime)")
    customer: Customer

    class Config:
        json_schema_extra = {
            "example": {
                "plan_id": "lifetime",
                "customer": {
                    "name": "Maria Silva",
                    "email": "maria@example.com",
                    "cpf": "123.456.789-09"
                }
            }
        }


class CheckoutResponse(BaseModel):
    success: bool
    session: SessionSnapshot


class ChargeStatusResponse(BaseModel):
    success: bool
    charge_id: str
    status: ChargeStatus


class CancelSessionResponse(BaseModel):
    success: bool
    message: str
    charge_id: str


class WebhookPushinPayRequest(BaseModel):
    payment_id: Optional[str] = None
    status: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool
    message: str


class SubscriptionStatusResponse(BaseModel):
    success: bool
    active: bool
    subscription: Optional[UserSubscriptionSchema] = None


class ErrorResponse(BaseModel):
    success: bool = False
    detail: str
    errors: Optional[Dict[str, str]] = None
    retryable: bool = False
