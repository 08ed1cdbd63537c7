"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str


# ============================================================================
# Webhook schemas
# ============================================================================


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = True


# ============================================================================
# Reprocessing schemas
# ============================================================================


class ReprocessRequest(BaseModel):
    """Reprocess all pending payments, or a list of payments."""

    process_all_pending: bool = False
    limit: int | None = Field(default=None, ge=1, le=1000)
    payment_ids: list[str] | None = None


class ReprocessItemResponse(BaseModel):
    """Outcome for one payment."""

    payment_id: str
    status: str
    message: str
    commissions_count: int = 0


class ReprocessSummary(BaseModel):
    """Outcome counts for a reprocessing run."""

    total: int
    already_processed: int
    commissions_found: int
    reprocessed: int
    errors: int


class ReprocessResponse(BaseModel):
    """Result of a reprocessing run."""

    success: bool
    summary: ReprocessSummary
    results: list[ReprocessItemResponse]


# ============================================================================
# Commission schemas
# ============================================================================


class CommissionResponse(BaseModel):
    """Commission with its status as of the request."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    affiliate_id: UUID
    payment_id: UUID
    subscription_id: UUID | None = None
    user_id: UUID | None = None
    commission_type: str
    level: int
    percentage: Decimal
    amount: Decimal
    status: str
    effective_status: str
    payment_date: datetime
    available_date: datetime
    reference_month: date | None = None
    withdrawal_id: UUID | None = None


class CommissionListResponse(BaseModel):
    """List of commissions."""

    items: list[CommissionResponse]
    total: int


class BalanceResponse(BaseModel):
    """Commission totals per effective status."""

    affiliate_id: UUID
    pending: Decimal
    available: Decimal
    reserved: Decimal
    withdrawable: Decimal
    withdrawn: Decimal
    cancelled: Decimal
    counts: dict[str, int]


# ============================================================================
# Withdrawal schemas
# ============================================================================


class WithdrawalCreate(BaseModel):
    """Schema for requesting a withdrawal."""

    affiliate_id: UUID
    commission_ids: list[UUID] = Field(min_length=1)
    pix_key: str = Field(min_length=1, max_length=255)
    pix_type: str = Field(min_length=1, max_length=30)


class WithdrawalApproveRequest(BaseModel):
    """Schema for approving a withdrawal."""

    approved_by: UUID | None = None


class WithdrawalPayRequest(BaseModel):
    """Schema for marking a withdrawal paid."""

    proof_urls: list[str] = Field(min_length=1)


class WithdrawalRejectRequest(BaseModel):
    """Schema for rejecting a withdrawal."""

    reason: str = Field(min_length=1)


class WithdrawalResponse(BaseModel):
    """Schema for withdrawal response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    affiliate_id: UUID
    amount: Decimal
    status: str
    pix_key: str
    pix_type: str
    commission_ids: list[str]
    requested_date: datetime
    approved_date: datetime | None = None
    approved_by: UUID | None = None
    paid_date: datetime | None = None
    rejected_reason: str | None = None
    payment_proof_urls: list[str] = []
