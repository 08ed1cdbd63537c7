"""Affiliate commission read endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query

from commission_engine.api.dependencies import DbSession
from commission_engine.api.schemas import (
    BalanceResponse,
    CommissionListResponse,
    CommissionResponse,
)
from commission_engine.services.commission_status import CommissionQueryService

router = APIRouter(prefix="/affiliates", tags=["affiliates"])


@router.get("/{affiliate_id}/commissions", response_model=CommissionListResponse)
def list_commissions(
    db: DbSession,
    affiliate_id: Annotated[UUID, Path()],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> CommissionListResponse:
    """List an affiliate's commissions with their current status."""
    rows = CommissionQueryService(db).list_for_affiliate(
        affiliate_id, status=status_filter, limit=limit, offset=offset
    )
    items = [
        CommissionResponse.model_validate(
            {**commission.to_dict(), "effective_status": effective}
        )
        for commission, effective in rows
    ]
    return CommissionListResponse(items=items, total=len(items))


@router.get("/{affiliate_id}/balance", response_model=BalanceResponse)
def get_balance(
    db: DbSession,
    affiliate_id: Annotated[UUID, Path()],
) -> BalanceResponse:
    """Commission totals per status for an affiliate."""
    balance = CommissionQueryService(db).balance(affiliate_id)
    return BalanceResponse(
        affiliate_id=balance.affiliate_id,
        pending=balance.pending,
        available=balance.available,
        reserved=balance.reserved,
        withdrawable=balance.withdrawable,
        withdrawn=balance.withdrawn,
        cancelled=balance.cancelled,
        counts=balance.counts,
    )
