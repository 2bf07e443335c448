"""Per-user credit aggregate: score, limit and repayment totals"""

from decimal import Decimal
from typing import Callable, Tuple

from microloan_gateway.domain.lifecycle import to_money
from microloan_gateway.domain.models import RepaymentStatus, ScoreBounds
from microloan_gateway.domain.scoring import clamp_score


def apply_score_delta(
    user,
    delta: int,
    bounds: ScoreBounds,
    limit_for_score: Callable[[int], float],
) -> Tuple[int, int]:
    """
    Move the user's score by delta, clamped to bounds.

    When auto-limit is enabled the credit limit is recomputed from the new
    score; it is never negative.

    Returns: (previous_score, new_score)
    """
    previous = int(user.credit_score or 0)
    new_score = clamp_score(previous + int(delta), bounds)
    user.credit_score = new_score

    if user.auto_limit_enabled:
        user.credit_limit = max(Decimal("0.00"), to_money(limit_for_score(new_score)))

    return previous, new_score


def record_repayment(user, applied_amount: Decimal, loan_completed: bool, paid_late: bool) -> None:
    user.total_repaid = to_money(user.total_repaid or 0) + to_money(applied_amount)
    if loan_completed:
        user.repayment_status = RepaymentStatus.COMPLETED
    elif paid_late:
        user.repayment_status = RepaymentStatus.LATE
    else:
        user.repayment_status = RepaymentStatus.PARTIAL


def record_disbursement(user, principal: Decimal) -> None:
    user.total_borrowed = to_money(user.total_borrowed or 0) + to_money(principal)
    user.repayment_status = RepaymentStatus.PENDING


def record_default(user) -> None:
    user.repayment_status = RepaymentStatus.DEFAULTED
