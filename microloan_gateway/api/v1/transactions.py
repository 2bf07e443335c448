"""/v1/transactions - repayment intake and reconciliation"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from microloan_gateway.api.dependencies import get_actor_id, get_notification_client, get_request_id
from microloan_gateway.api.errors import http_error
from microloan_gateway.api.v1.schemas import (
    ReconcileRequest,
    ReconciliationResponse,
    RepaymentRequest,
    TransactionResponse,
)
from microloan_gateway.infrastructure.clients.notifier import NotificationClient
from microloan_gateway.infrastructure.database.session import get_db
from microloan_gateway.services.reconciliation import ReconciliationService

router = APIRouter()


@router.post("/transactions/repayments", response_model=TransactionResponse, status_code=201)
def record_repayment(
    request_body: RepaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Register a repayment notification as a pending transaction.

    Resending the same reference returns the transaction created the
    first time.
    """
    try:
        transaction = ReconciliationService(db).record_repayment(
            loan_id=request_body.loan_id,
            amount=request_body.amount,
            payment_method=request_body.payment_method,
            reference=request_body.reference,
            network=request_body.network,
        )
        return TransactionResponse.from_transaction(transaction)
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.post("/transactions/reconcile", response_model=ReconciliationResponse)
def reconcile_transaction(
    request_body: ReconcileRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    actor_id: Optional[str] = Depends(get_actor_id),
    db: Session = Depends(get_db),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Settle a pending transaction as completed or failed.

    Safe to call repeatedly: a transaction that is already settled returns
    its stored outcome with duplicate=true and changes nothing.
    """
    try:
        result = ReconciliationService(db).reconcile(
            transaction_id=request_body.transaction_id,
            status=request_body.status,
            amount=request_body.amount,
            notes=request_body.notes,
            actor_id=actor_id,
        )
    except Exception as e:
        raise http_error(e, get_request_id(request))

    response = ReconciliationResponse.from_result(result)
    if not result.duplicate:
        background_tasks.add_task(
            notifier.send_event,
            "TRANSACTION_RECONCILED",
            response.model_dump(mode="json", by_alias=True),
        )
    return response


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: str, request: Request, db: Session = Depends(get_db)):
    try:
        return TransactionResponse.from_transaction(ReconciliationService(db).get_transaction(transaction_id))
    except Exception as e:
        raise http_error(e, get_request_id(request))
