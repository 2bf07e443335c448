"""/v1/loans - loan creation, lifecycle transitions, listing, stats and export"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette.responses import Response

from microloan_gateway.api.dependencies import (
    get_actor_id,
    get_notification_client,
    get_request_id,
    require_actor_id,
)
from microloan_gateway.api.errors import http_error
from microloan_gateway.api.v1.schemas import (
    CreateLoanRequest,
    LoanListResponse,
    LoanResponse,
    LoanStatsResponse,
    RejectLoanRequest,
)
from microloan_gateway.domain.models import LoanStatus, Network
from microloan_gateway.infrastructure.clients.notifier import NotificationClient
from microloan_gateway.infrastructure.database.session import get_db
from microloan_gateway.services.loans import MAX_PAGE_SIZE, LoanService

router = APIRouter()


def _notify(background_tasks: BackgroundTasks, notifier: NotificationClient, event: str, loan, actor_id) -> None:
    """Queue the event; runs after the response, long after the commit"""
    background_tasks.add_task(
        notifier.send_event,
        event,
        {
            "loan_id": loan.loan_id,
            "user_id": str(loan.user_id),
            "user_email": loan.user_email,
            "status": LoanStatus(loan.status).value,
            "amount": float(loan.amount),
            "actor_id": actor_id,
        },
    )


@router.post("/loans", response_model=LoanResponse, status_code=201)
def create_loan(
    request_body: CreateLoanRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Request a loan for a user.

    The amount must fit in the user's credit limit minus what is still
    outstanding on their active loans. Rate and period come from the
    score-based policy unless given.
    """
    request_id = get_request_id(request)
    try:
        loan = LoanService(db).create_loan(
            user_id=request_body.user_id,
            amount=request_body.amount,
            network=request_body.network,
            interest_rate=request_body.interest_rate,
            repayment_period=request_body.repayment_period,
            metadata=request_body.metadata,
        )
        return LoanResponse.from_loan(loan)
    except Exception as e:
        raise http_error(e, request_id)


@router.get("/loans", response_model=LoanListResponse)
def list_loans(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[LoanStatus] = Query(None),
    network: Optional[Network] = Query(None),
    search: Optional[str] = Query(None, description="Matches loan id, phone or email"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    request_id = get_request_id(request)
    try:
        result = LoanService(db).list_loans(
            page=page,
            limit=limit,
            status=status,
            network=network,
            search=search,
            created_from=start_date,
            created_to=end_date,
        )
    except Exception as e:
        raise http_error(e, request_id)

    return LoanListResponse(
        data=[LoanResponse.from_loan(loan) for loan in result.data],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/loans/stats", response_model=LoanStatsResponse)
def get_loan_stats(request: Request, db: Session = Depends(get_db)):
    try:
        return LoanStatsResponse.from_stats(LoanService(db).get_loan_stats())
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.get("/loans/export")
def export_loans(
    request: Request,
    status: Optional[LoanStatus] = Query(None),
    network: Optional[Network] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    """Filtered loans as CSV"""
    try:
        content = LoanService(db).export_loans(
            status=status,
            network=network,
            search=search,
            created_from=start_date,
            created_to=end_date,
        )
    except Exception as e:
        raise http_error(e, get_request_id(request))

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="loans-export.csv"'},
    )


@router.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan(loan_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        return LoanResponse.from_loan(LoanService(db).get_loan(loan_id))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.post("/loans/{loan_id}/approve", response_model=LoanResponse)
def approve_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    try:
        loan = LoanService(db).approve_loan(loan_id, actor_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    _notify(background_tasks, notifier, "LOAN_APPROVED", loan, actor_id)
    return LoanResponse.from_loan(loan)


@router.post("/loans/{loan_id}/reject", response_model=LoanResponse)
def reject_loan(
    loan_id: str,
    request_body: RejectLoanRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    actor_id: Optional[str] = Depends(get_actor_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    try:
        loan = LoanService(db).reject_loan(loan_id, request_body.reason, actor_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    _notify(background_tasks, notifier, "LOAN_REJECTED", loan, actor_id)
    return LoanResponse.from_loan(loan)


@router.post("/loans/{loan_id}/disburse", response_model=LoanResponse)
def disburse_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    actor_id: str = Depends(require_actor_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    try:
        loan = LoanService(db).disburse_loan(loan_id, actor_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    _notify(background_tasks, notifier, "LOAN_DISBURSED", loan, actor_id)
    return LoanResponse.from_loan(loan)


@router.post("/loans/{loan_id}/default", response_model=LoanResponse)
def default_loan(
    loan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    actor_id: Optional[str] = Depends(get_actor_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    try:
        loan = LoanService(db).default_loan(loan_id, actor_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    _notify(background_tasks, notifier, "LOAN_DEFAULTED", loan, actor_id)
    return LoanResponse.from_loan(loan)
