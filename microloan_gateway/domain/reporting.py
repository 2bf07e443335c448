"""Read-only projections over loans: portfolio stats and CSV export"""

import csv
import io
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping

from microloan_gateway.domain.models import LoanStats, LoanStatus

EXPORT_HEADERS = [
    "Loan ID",
    "User ID",
    "Phone",
    "Email",
    "Amount",
    "Status",
    "Network",
    "Interest Rate",
    "Repayment Period",
    "Due Date",
    "Amount Due",
    "Amount Paid",
    "Outstanding Amount",
    "Created At",
]

_DISBURSED_STATUSES = (
    LoanStatus.DISBURSED,
    LoanStatus.REPAYING,
    LoanStatus.COMPLETED,
    LoanStatus.DEFAULTED,
)
_OUTSTANDING_STATUSES = (LoanStatus.DISBURSED, LoanStatus.REPAYING)


def build_loan_stats(
    totals: Mapping[LoanStatus, Mapping[str, Any]],
    today_count: int,
    today_amount: Decimal,
) -> LoanStats:
    """
    Aggregate per-status totals into portfolio stats.

    - defaultRate: defaulted / (completed + defaulted), as a percentage
    - repaymentRate: repaid / disbursed cash, as a percentage
    - totalOutstanding only counts loans that actually released funds
    """

    def total(key: str, statuses: Iterable[LoanStatus] = tuple(LoanStatus)) -> Decimal:
        return sum((Decimal(totals[s][key]) for s in statuses if s in totals), Decimal("0"))

    def count(*statuses: LoanStatus) -> int:
        return sum(totals[s]["count"] for s in statuses if s in totals)

    loan_count = count(*LoanStatus)
    loan_amount = total("amount")
    completed = count(LoanStatus.COMPLETED)
    defaulted = count(LoanStatus.DEFAULTED)
    repaid = total("amount_paid")
    disbursed = total("disbursed", _DISBURSED_STATUSES)

    return LoanStats(
        total_loans=loan_count,
        total_loan_amount=float(loan_amount),
        requested_loans=count(LoanStatus.REQUESTED),
        approved_loans=count(LoanStatus.APPROVED),
        outstanding_loans=count(*_OUTSTANDING_STATUSES),
        defaulted_loans=defaulted,
        total_outstanding=float(total("outstanding", _OUTSTANDING_STATUSES + (LoanStatus.DEFAULTED,))),
        total_repaid=float(repaid),
        default_rate=round(defaulted / (completed + defaulted) * 100, 2) if completed + defaulted else 0.0,
        repayment_rate=round(float(repaid / disbursed * 100), 2) if disbursed > 0 else 0.0,
        average_loan_amount=round(float(loan_amount / loan_count), 2) if loan_count else 0.0,
        today_loans=today_count,
        today_amount=float(today_amount),
    )


def _day(value) -> str:
    return value.date().isoformat() if value else ""


def loan_export_row(loan) -> Dict[str, Any]:
    return {
        "Loan ID": loan.loan_id,
        "User ID": str(loan.user_id),
        "Phone": loan.user_phone or "",
        "Email": loan.user_email or "",
        "Amount": loan.amount,
        "Status": LoanStatus(loan.status).value,
        "Network": getattr(loan.network, "value", loan.network),
        "Interest Rate": loan.interest_rate,
        "Repayment Period": loan.repayment_period,
        "Due Date": _day(loan.due_date),
        "Amount Due": loan.amount_due,
        "Amount Paid": loan.amount_paid,
        "Outstanding Amount": loan.outstanding_amount,
        "Created At": _day(loan.created_at),
    }


def render_loans_csv(loans: Iterable) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_HEADERS, lineterminator="\n")
    writer.writeheader()
    for loan in loans:
        writer.writerow(loan_export_row(loan))
    return buffer.getvalue()
