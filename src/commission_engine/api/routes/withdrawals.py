"""Withdrawal API endpoints."""

from typing import Annotated, NoReturn
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from commission_engine.api.dependencies import DbSession
from commission_engine.api.schemas import (
    ErrorResponse,
    WithdrawalApproveRequest,
    WithdrawalCreate,
    WithdrawalPayRequest,
    WithdrawalRejectRequest,
    WithdrawalResponse,
)
from commission_engine.errors import InvalidTransitionError
from commission_engine.services.withdrawals import (
    WithdrawalError,
    WithdrawalNotFoundError,
    WithdrawalService,
)

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, WithdrawalNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


# ============================================================================
# Withdrawal CRUD
# ============================================================================


@router.post(
    "",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
def request_withdrawal(db: DbSession, payload: WithdrawalCreate) -> WithdrawalResponse:
    """Request a payout of available commissions."""
    try:
        withdrawal = WithdrawalService(db).request(
            payload.affiliate_id,
            payload.commission_ids,
            payload.pix_key,
            payload.pix_type,
        )
    except WithdrawalError as e:
        db.rollback()
        _raise_http(e)
    db.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.get("/{withdrawal_id}", response_model=WithdrawalResponse, responses=ERROR_RESPONSES)
def get_withdrawal(
    db: DbSession, withdrawal_id: Annotated[UUID, Path()]
) -> WithdrawalResponse:
    """Get a withdrawal by ID."""
    try:
        withdrawal = WithdrawalService(db).get(withdrawal_id)
    except WithdrawalNotFoundError as e:
        _raise_http(e)
    return WithdrawalResponse.model_validate(withdrawal)


# ============================================================================
# Lifecycle transitions
# ============================================================================


@router.post(
    "/{withdrawal_id}/approve", response_model=WithdrawalResponse, responses=ERROR_RESPONSES
)
def approve_withdrawal(
    db: DbSession,
    withdrawal_id: Annotated[UUID, Path()],
    payload: WithdrawalApproveRequest,
) -> WithdrawalResponse:
    """Approve a pending withdrawal."""
    try:
        withdrawal = WithdrawalService(db).approve(withdrawal_id, payload.approved_by)
    except (WithdrawalError, InvalidTransitionError) as e:
        db.rollback()
        _raise_http(e)
    db.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.post("/{withdrawal_id}/pay", response_model=WithdrawalResponse, responses=ERROR_RESPONSES)
def pay_withdrawal(
    db: DbSession,
    withdrawal_id: Annotated[UUID, Path()],
    payload: WithdrawalPayRequest,
) -> WithdrawalResponse:
    """Mark an approved withdrawal as paid."""
    try:
        withdrawal = WithdrawalService(db).mark_paid(withdrawal_id, payload.proof_urls)
    except (WithdrawalError, InvalidTransitionError) as e:
        db.rollback()
        _raise_http(e)
    db.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.post(
    "/{withdrawal_id}/reject", response_model=WithdrawalResponse, responses=ERROR_RESPONSES
)
def reject_withdrawal(
    db: DbSession,
    withdrawal_id: Annotated[UUID, Path()],
    payload: WithdrawalRejectRequest,
) -> WithdrawalResponse:
    """Reject a pending withdrawal, releasing its commissions."""
    try:
        withdrawal = WithdrawalService(db).reject(withdrawal_id, payload.reason)
    except (WithdrawalError, InvalidTransitionError) as e:
        db.rollback()
        _raise_http(e)
    db.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.post(
    "/{withdrawal_id}/unapprove", response_model=WithdrawalResponse, responses=ERROR_RESPONSES
)
def unapprove_withdrawal(
    db: DbSession, withdrawal_id: Annotated[UUID, Path()]
) -> WithdrawalResponse:
    """Return an approved withdrawal to pending."""
    try:
        withdrawal = WithdrawalService(db).unapprove(withdrawal_id)
    except (WithdrawalError, InvalidTransitionError) as e:
        db.rollback()
        _raise_http(e)
    db.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.post(
    "/{withdrawal_id}/revert", response_model=WithdrawalResponse, responses=ERROR_RESPONSES
)
def revert_withdrawal_payment(
    db: DbSession, withdrawal_id: Annotated[UUID, Path()]
) -> WithdrawalResponse:
    """Revert a paid withdrawal back to approved."""
    try:
        withdrawal = WithdrawalService(db).revert_payment(withdrawal_id)
    except (WithdrawalError, InvalidTransitionError) as e:
        db.rollback()
        _raise_http(e)
    db.commit()
    return WithdrawalResponse.model_validate(withdrawal)
