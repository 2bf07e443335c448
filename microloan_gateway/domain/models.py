"""Domain models - enums and pure Python dataclasses representing business values"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar


class LoanStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    REPAYING = "repaying"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


class Network(str, Enum):
    MTN = "MTN"
    AIRTEL = "Airtel"
    GLO = "Glo"
    NINEMOBILE = "9mobile"


class TransactionType(str, Enum):
    DISBURSEMENT = "disbursement"
    REPAYMENT = "repayment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    WALLET = "wallet"
    CASH = "cash"


class RepaymentStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    LATE = "late"
    DEFAULTED = "defaulted"


class ScoreReason(str, Enum):
    PARTIAL_REPAYMENT = "partial_repayment"
    LOAN_COMPLETED = "loan_completed"
    PENALTY = "penalty"
    MANUAL_ADJUSTMENT = "manual_adjustment"


# Loans whose outstanding balance still counts against the user's credit
ACTIVE_LOAN_STATUSES = (
    LoanStatus.REQUESTED,
    LoanStatus.APPROVED,
    LoanStatus.DISBURSED,
    LoanStatus.REPAYING,
    LoanStatus.DEFAULTED,
)


@dataclass(frozen=True)
class AmountTier:
    """Repayment amount band and its point multiplier"""

    min_amount: float
    max_amount: float
    multiplier: float


@dataclass(frozen=True)
class DurationTier:
    """Days-since-disbursement band and its point multiplier"""

    min_days: int
    max_days: int
    multiplier: float


@dataclass(frozen=True)
class RepaymentScoringPolicy:
    """Typed form of the credit_score.repayment_scoring config document"""

    base_points: float
    amount_multipliers: List[AmountTier]
    duration_multipliers: List[DurationTier]
    max_points_per_transaction: float
    enable_partial_repayments: bool = True
    min_points_for_partial_repayment: float = 0
    full_repayment_bonus: float = 0
    full_repayment_fixed_bonus: float = 0
    prorate_partial_repayments: bool = False


@dataclass(frozen=True)
class ScoreAward:
    """Output of the scoring policy for one repayment event"""

    points: int
    reason: ScoreReason
    breakdown: Dict[str, Any]


@dataclass(frozen=True)
class CreditThreshold:
    """Minimum score needed to qualify for a loan amount"""

    score: int
    amount: float


@dataclass(frozen=True)
class ScoreBand:
    """Inclusive score range mapped to a loan term value (rate or period)"""

    min_score: int
    max_score: int
    value: float


@dataclass(frozen=True)
class ScoreBounds:
    min_score: int
    max_score: int


@dataclass
class RepaymentOutcome:
    """Bookkeeping result of applying one repayment to a loan"""

    applied_amount: Decimal
    excess_amount: Decimal
    outstanding_amount: Decimal
    completed: bool

    @property
    def over_repayment(self) -> bool:
        return self.excess_amount > 0


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one transaction status change"""

    transaction_id: str
    status: TransactionStatus
    duplicate: bool = False
    loan_id: Optional[str] = None
    loan_status: Optional[LoanStatus] = None
    amount_applied: Decimal = Decimal("0")
    outstanding_amount: Optional[Decimal] = None
    is_full_repayment: bool = False
    points_awarded: int = 0
    reason: Optional[ScoreReason] = None
    previous_score: Optional[int] = None
    new_score: Optional[int] = None
    over_repayment: bool = False
    excess_amount: Decimal = Decimal("0")


@dataclass
class LoanStats:
    total_loans: int = 0
    total_loan_amount: float = 0.0
    requested_loans: int = 0
    approved_loans: int = 0
    outstanding_loans: int = 0
    defaulted_loans: int = 0
    total_outstanding: float = 0.0
    total_repaid: float = 0.0
    default_rate: float = 0.0
    repayment_rate: float = 0.0
    average_loan_amount: float = 0.0
    today_loans: int = 0
    today_amount: float = 0.0


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    data: List[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0
