"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from microloan_gateway.domain.models import (
    LoanStats,
    LoanStatus,
    Network,
    PaymentMethod,
    ReconciliationResult,
    ScoreReason,
    TransactionStatus,
    TransactionType,
)


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateLoanRequest(ApiModel):
    """Request body for POST /v1/loans"""

    user_id: str = Field(..., min_length=1, description="Internal user id")
    amount: float = Field(..., gt=0, description="Requested principal")
    network: Network
    interest_rate: Optional[float] = Field(None, ge=0, lt=100, description="Overrides the score-based rate")
    repayment_period: Optional[int] = Field(None, gt=0, description="Days; overrides the score-based period")
    metadata: Optional[Dict[str, Any]] = None


class RejectLoanRequest(ApiModel):
    reason: str = Field(..., min_length=1)


class LoanResponse(ApiModel):
    id: str
    loan_id: str
    user_id: str
    user_phone: str
    user_email: Optional[str] = None
    amount: float
    disbursed_amount: Optional[float] = None
    interest_rate: float
    repayment_period: int
    amount_due: float
    amount_paid: float
    outstanding_amount: float
    due_date: datetime
    status: LoanStatus
    network: Network
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    disbursed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    defaulted_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_loan(cls, loan) -> "LoanResponse":
        return cls(
            id=str(loan.id),
            loan_id=loan.loan_id,
            user_id=str(loan.user_id),
            user_phone=loan.user_phone,
            user_email=loan.user_email,
            amount=float(loan.amount),
            disbursed_amount=_float(loan.disbursed_amount),
            interest_rate=float(loan.interest_rate),
            repayment_period=loan.repayment_period,
            amount_due=float(loan.amount_due),
            amount_paid=float(loan.amount_paid),
            outstanding_amount=float(loan.outstanding_amount),
            due_date=loan.due_date,
            status=loan.status,
            network=loan.network,
            approved_at=loan.approved_at,
            approved_by=loan.approved_by,
            rejected_at=loan.rejected_at,
            rejected_by=loan.rejected_by,
            rejection_reason=loan.rejection_reason,
            disbursed_at=loan.disbursed_at,
            disbursed_by=loan.disbursed_by,
            completed_at=loan.completed_at,
            defaulted_at=loan.defaulted_at,
            created_at=loan.created_at,
        )


class LoanListResponse(ApiModel):
    """Response for GET /v1/loans"""

    data: List[LoanResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class LoanStatsResponse(ApiModel):
    total_loans: int
    total_loan_amount: float
    requested_loans: int
    approved_loans: int
    outstanding_loans: int
    defaulted_loans: int
    total_outstanding: float
    total_repaid: float
    default_rate: float
    repayment_rate: float
    average_loan_amount: float
    today_loans: int
    today_amount: float

    @classmethod
    def from_stats(cls, stats: LoanStats) -> "LoanStatsResponse":
        return cls(**vars(stats))


class RepaymentRequest(ApiModel):
    """Request body for POST /v1/transactions/repayments"""

    loan_id: str = Field(..., min_length=1, description="Business loan id, e.g. LOAN-2024-001")
    amount: float = Field(..., gt=0)
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = Field(None, description="Gateway reference; resending it returns the same transaction")
    network: Optional[str] = None


class ReconcileRequest(ApiModel):
    """Request body for POST /v1/transactions/reconcile"""

    transaction_id: str = Field(..., min_length=1)
    status: TransactionStatus
    amount: Optional[float] = Field(None, gt=0, description="Confirmed amount; defaults to the recorded amount")
    notes: Optional[str] = None


class TransactionResponse(ApiModel):
    transaction_id: str
    loan_id: Optional[str] = None
    user_id: str
    type: TransactionType
    status: TransactionStatus
    amount: float
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = None
    network: Optional[str] = None
    notes: Optional[str] = None
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction) -> "TransactionResponse":
        return cls(
            transaction_id=transaction.transaction_id,
            loan_id=transaction.loan.loan_id if transaction.loan is not None else None,
            user_id=str(transaction.user_id),
            type=transaction.type,
            status=transaction.status,
            amount=float(transaction.amount),
            payment_method=transaction.payment_method,
            reference=transaction.reference,
            network=transaction.network,
            notes=transaction.notes,
            reconciled_at=transaction.reconciled_at,
            reconciled_by=transaction.reconciled_by,
            created_at=transaction.created_at,
        )


class ReconciliationResponse(ApiModel):
    transaction_id: str
    status: TransactionStatus
    duplicate: bool
    loan_id: Optional[str] = None
    loan_status: Optional[LoanStatus] = None
    amount_applied: float
    outstanding_amount: Optional[float] = None
    is_full_repayment: bool
    points_awarded: int
    reason: Optional[ScoreReason] = None
    previous_score: Optional[int] = None
    new_score: Optional[int] = None
    over_repayment: bool
    excess_amount: float

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "ReconciliationResponse":
        return cls(
            transaction_id=result.transaction_id,
            status=result.status,
            duplicate=result.duplicate,
            loan_id=result.loan_id,
            loan_status=result.loan_status,
            amount_applied=float(result.amount_applied),
            outstanding_amount=_float(result.outstanding_amount),
            is_full_repayment=result.is_full_repayment,
            points_awarded=result.points_awarded,
            reason=result.reason,
            previous_score=result.previous_score,
            new_score=result.new_score,
            over_repayment=result.over_repayment,
            excess_amount=float(result.excess_amount),
        )


class CreditScoreHistoryItem(ApiModel):
    """Single ledger entry"""

    id: str
    user_id: str
    loan_id: Optional[str] = None
    transaction_id: Optional[str] = None
    previous_score: int
    new_score: int
    points_awarded: int
    reason: ScoreReason
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry) -> "CreditScoreHistoryItem":
        return cls(
            id=str(entry.id),
            user_id=str(entry.user_id),
            loan_id=str(entry.loan_id) if entry.loan_id else None,
            transaction_id=str(entry.transaction_id) if entry.transaction_id else None,
            previous_score=entry.previous_score,
            new_score=entry.new_score,
            points_awarded=entry.points_awarded,
            reason=entry.reason,
            metadata=entry.details,
            created_at=entry.created_at,
        )


class CreditScoreHistoryResponse(ApiModel):
    """Response for GET /v1/users/{user_id}/credit-score/history"""

    user_id: str
    data: List[CreditScoreHistoryItem]
    total: int
    page: int
    limit: int
    total_pages: int


class EligibilityResponse(ApiModel):
    user_id: str
    credit_score: int
    credit_limit: float
    auto_limit_enabled: bool
    eligible_amount: float
