"""Commission reprocessing endpoint."""

from fastapi import APIRouter, HTTPException, status

from commission_engine.api.dependencies import AppSettings, DbSession
from commission_engine.api.schemas import (
    ErrorResponse,
    ReprocessItemResponse,
    ReprocessRequest,
    ReprocessResponse,
    ReprocessSummary,
)
from commission_engine.services.environment import EnvironmentResolver
from commission_engine.services.reconciliation import ReconciliationService
from commission_engine.services.settlement import SettlementEngine

router = APIRouter(prefix="/commissions", tags=["commissions"])


@router.post(
    "/reprocess",
    response_model=ReprocessResponse,
    responses={400: {"model": ErrorResponse}},
)
def reprocess_commissions(
    db: DbSession,
    settings: AppSettings,
    payload: ReprocessRequest,
) -> ReprocessResponse:
    """Reprocess pending payments or specific payments.

    Each payment is handled independently; failures are reported per item
    and recorded on the payment.
    """
    engine = SettlementEngine(
        db,
        EnvironmentResolver(db, settings),
        max_depth=settings.max_commission_depth,
    )
    service = ReconciliationService(db, engine)

    if payload.process_all_pending:
        report = service.reprocess_all(limit=payload.limit or settings.reprocess_batch_limit)
    elif payload.payment_ids:
        report = service.reprocess_many(payload.payment_ids)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide payment_ids or set process_all_pending",
        )

    db.commit()
    return ReprocessResponse(
        success=True,
        summary=ReprocessSummary(**report.summary),
        results=[ReprocessItemResponse(**item.to_dict()) for item in report.results],
    )
