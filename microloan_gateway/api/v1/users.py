"""/v1/users - credit score history and loan eligibility"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from microloan_gateway.api.dependencies import get_request_id
from microloan_gateway.api.errors import http_error
from microloan_gateway.api.v1.schemas import (
    CreditScoreHistoryItem,
    CreditScoreHistoryResponse,
    EligibilityResponse,
)
from microloan_gateway.infrastructure.database.session import get_db
from microloan_gateway.services.credit_score import CreditScoreService

router = APIRouter()


@router.get("/users/{user_id}/credit-score/history", response_model=CreditScoreHistoryResponse)
def get_credit_score_history(
    user_id: str,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """
    Ledger entries for a user, newest first.

    Returns:
        One entry per reconciled repayment, including zero-point awards
    """
    try:
        result = CreditScoreService(db).get_credit_score_history(user_id, page=page, limit=limit)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    return CreditScoreHistoryResponse(
        user_id=user_id,
        data=[CreditScoreHistoryItem.from_entry(entry) for entry in result.data],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/users/{user_id}/eligibility", response_model=EligibilityResponse)
def get_eligibility(user_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        service = CreditScoreService(db)
        user = service.get_user(user_id)
        eligible = service.calculate_eligible_amount(user.id)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    return EligibilityResponse(
        user_id=str(user.id),
        credit_score=user.credit_score,
        credit_limit=float(user.credit_limit),
        auto_limit_enabled=user.auto_limit_enabled,
        eligible_amount=float(eligible),
    )
