from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, EmailStr, Field


# One US dollar in cents: the smallest purchase the checkout accepts.
MIN_PAYMENT_AMOUNT = 100
# Fits a signed 32-bit INTEGER column.
MAX_PAYMENT_AMOUNT = 2**31 - 1


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class DownloadState(str, Enum):
    REQUESTING = "REQUESTING"
    CHECKING = "CHECKING"
    GRANTED = "GRANTED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    DELIVERED = "DELIVERED"


class UserBalance(BaseModel):
    user_id: str
    free_downloads: int = Field(..., ge=0)
    total_downloads: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConsumeResult(BaseModel):
    consumed: bool
    balance: UserBalance


class GenerateCoverRequest(BaseModel):
    book_title: str = Field(..., min_length=1, max_length=200)
    author_name: str = Field(..., min_length=1, max_length=200)
    genre: str = Field(..., min_length=1, max_length=100)
    keywords: Optional[str] = Field(default=None, max_length=500)
    mood: Optional[str] = Field(default=None, max_length=100)
    color_palette: Optional[str] = Field(default=None, max_length=200)

    model_config = ConfigDict(str_strip_whitespace=True, json_schema_extra={
        "example": {
            "book_title": "The Salt Road",
            "author_name": "Ada Mensah",
            "genre": "fantasy",
            "keywords": "desert caravan, twin moons",
            "mood": "epic",
            "color_palette": "warm golds and deep indigo",
        }
    })


class Cover(BaseModel):
    id: UUID
    owner_id: Optional[str] = None
    book_title: str
    author_name: str
    genre: str
    keywords: Optional[str] = None
    mood: Optional[str] = None
    color_palette: Optional[str] = None
    prompt: str
    image_url: Optional[str] = None
    downloaded: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_visible_to(self, user_id: str) -> bool:
        return self.owner_id is None or self.owner_id == user_id


class CoverResponse(BaseModel):
    """Cover metadata without the image payload; the payload is served by a download."""
    id: UUID
    owner_id: Optional[str] = None
    book_title: str
    author_name: str
    genre: str
    keywords: Optional[str] = None
    mood: Optional[str] = None
    color_palette: Optional[str] = None
    prompt: str
    downloaded: bool
    created_at: datetime


class DownloadRequest(BaseModel):
    cover_id: UUID


class DownloadResult(BaseModel):
    state: DownloadState
    user_id: str
    cover_id: UUID
    image_url: Optional[str] = None
    remaining_free: int

    @property
    def delivered(self) -> bool:
        return self.state == DownloadState.DELIVERED


class DownloadResponse(BaseModel):
    cover_id: UUID
    image_url: str
    remaining_free: int


class PaymentRequiredResponse(BaseModel):
    payment_required: bool = True
    cover_id: UUID
    remaining_free: int = 0
    message: str = "No free downloads left. Purchase credits to continue."


class InitializePaymentRequest(BaseModel):
    email: EmailStr
    amount: int = Field(
        ..., ge=MIN_PAYMENT_AMOUNT, le=MAX_PAYMENT_AMOUNT, description="Amount in minor units (cents)",
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {"email": "reader@example.com", "amount": 100}
    })


class InitializePaymentResponse(BaseModel):
    reference: str
    authorization_url: str
    access_code: Optional[str] = None
    amount: int
    currency: str
    credits: int


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=100)

    model_config = ConfigDict(str_strip_whitespace=True)


class VerifyPaymentResponse(BaseModel):
    reference: str
    status: PaymentStatus
    credits_added: int
    already_settled: bool = False
    # Only reported to the user who owns the payment.
    free_downloads: Optional[int] = None
    message: str


class PendingPayment(BaseModel):
    reference: str
    user_id: str
    email: str
    amount: int
    currency: str
    credits: int
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentRecord(BaseModel):
    reference: str
    user_id: str
    amount: int
    currency: str
    status: PaymentStatus
    credits_added: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GatewayInitialization(BaseModel):
    reference: str
    authorization_url: str
    access_code: Optional[str] = None


class GatewayTransaction(BaseModel):
    reference: str
    status: PaymentStatus
    amount: int
    currency: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    gateway_response: Optional[str] = None
