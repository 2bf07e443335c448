"""Data access layer for users, loans, transactions, the score ledger and system config"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from microloan_gateway.domain.exceptions import LedgerImmutableError
from microloan_gateway.domain.models import (
    ACTIVE_LOAN_STATUSES,
    LoanStatus,
    Network,
    ScoreReason,
    TransactionType,
)
from microloan_gateway.infrastructure.database.models import (
    CreditScoreHistory,
    Loan,
    SystemConfig,
    Transaction,
    User,
)


class UserRepository:
    """Repository for credit subjects"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: uuid.UUID, for_update: bool = False) -> Optional[User]:
        query = self.db.query(User).filter(User.id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()


class LoanRepository:
    """Repository for loans"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, loan: Loan) -> Loan:
        self.db.add(loan)
        self.db.flush()  # Get ID without committing
        return loan

    def get_by_loan_id(self, loan_id: str, for_update: bool = False) -> Optional[Loan]:
        query = self.db.query(Loan).filter(Loan.loan_id == loan_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get(self, id_: uuid.UUID, for_update: bool = False) -> Optional[Loan]:
        query = self.db.query(Loan).filter(Loan.id == id_)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def active_outstanding(self, user_id: uuid.UUID) -> List[Decimal]:
        """Outstanding balances of loans still counting against the user's credit"""
        rows = (
            self.db.query(Loan.outstanding_amount)
            .filter(Loan.user_id == user_id, Loan.status.in_(ACTIVE_LOAN_STATUSES))
            .all()
        )
        return [row[0] or Decimal("0") for row in rows]

    def next_loan_id(self, year: int) -> str:
        """Business identifier LOAN-<year>-<seq>; collisions surface as IntegrityError"""
        count = (
            self.db.query(func.count(Loan.id))
            .filter(Loan.loan_id.like(f"LOAN-{year}-%"))
            .scalar()
            or 0
        )
        return f"LOAN-{year}-{count + 1:03d}"

    def _filtered(
        self,
        status: Optional[LoanStatus] = None,
        network: Optional[Network] = None,
        search: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ):
        query = self.db.query(Loan)
        if status:
            query = query.filter(Loan.status == status)
        if network:
            query = query.filter(Loan.network == network)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Loan.loan_id.ilike(pattern),
                    Loan.user_phone.ilike(pattern),
                    Loan.user_email.ilike(pattern),
                )
            )
        if created_from:
            query = query.filter(Loan.created_at >= created_from)
        if created_to:
            query = query.filter(Loan.created_at <= created_to)
        return query.order_by(Loan.created_at.desc(), Loan.loan_id.desc())

    def list_loans(self, page: int = 1, limit: int = 10, **filters: Any) -> Tuple[List[Loan], int]:
        query = self._filtered(**filters)
        total = query.order_by(None).count()
        items = query.offset((page - 1) * limit).limit(limit).all()
        return items, total

    def export_loans(self, **filters: Any) -> List[Loan]:
        return self._filtered(**filters).all()

    def totals_by_status(self) -> Dict[LoanStatus, Dict[str, Any]]:
        """Per-status loan count and amount sums in a single grouped query"""
        rows = (
            self.db.query(
                Loan.status,
                func.count(Loan.id),
                func.coalesce(func.sum(Loan.amount), 0),
                func.coalesce(func.sum(Loan.amount_paid), 0),
                func.coalesce(func.sum(Loan.outstanding_amount), 0),
                func.coalesce(func.sum(Loan.disbursed_amount), 0),
            )
            .group_by(Loan.status)
            .all()
        )
        return {
            LoanStatus(status): {
                "count": count,
                "amount": Decimal(str(amount)),
                "amount_paid": Decimal(str(paid)),
                "outstanding": Decimal(str(outstanding)),
                "disbursed": Decimal(str(disbursed)),
            }
            for status, count, amount, paid, outstanding, disbursed in rows
        }

    def created_since(self, since: datetime) -> Tuple[int, Decimal]:
        count, amount = (
            self.db.query(func.count(Loan.id), func.coalesce(func.sum(Loan.amount), 0))
            .filter(Loan.created_at >= since)
            .one()
        )
        return count, Decimal(str(amount))


class TransactionRepository:
    """Repository for money movements"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, transaction: Transaction) -> Transaction:
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get_by_transaction_id(self, transaction_id: str, for_update: bool = False) -> Optional[Transaction]:
        query = self.db.query(Transaction).filter(Transaction.transaction_id == transaction_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_reference(self, type_: TransactionType, reference: str) -> Optional[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.type == type_, Transaction.reference == reference)
            .first()
        )


class CreditScoreHistoryRepository:
    """Append-only ledger of credit score awards"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_transaction(self, transaction_pk: uuid.UUID) -> Optional[CreditScoreHistory]:
        return (
            self.db.query(CreditScoreHistory)
            .filter(CreditScoreHistory.transaction_id == transaction_pk)
            .first()
        )

    def award(
        self,
        user_id: uuid.UUID,
        transaction_pk: uuid.UUID,
        loan_pk: Optional[uuid.UUID],
        points: int,
        reason: ScoreReason,
        previous_score: int,
        new_score: int,
        metadata: Dict[str, Any],
        created_at: datetime,
    ) -> Optional[CreditScoreHistory]:
        """
        Append a ledger entry for a transaction.

        Returns None without writing when the transaction already has an
        entry, including when a concurrent writer inserts it first.
        """
        if self.find_by_transaction(transaction_pk) is not None:
            return None

        entry = CreditScoreHistory(
            user_id=user_id,
            transaction_id=transaction_pk,
            loan_id=loan_pk,
            points_awarded=points,
            reason=reason,
            previous_score=previous_score,
            new_score=new_score,
            details=metadata,
            created_at=created_at,
        )
        try:
            with self.db.begin_nested():
                self.db.add(entry)
                self.db.flush()
        except IntegrityError:
            return None
        return entry

    def list_for_user(self, user_id: uuid.UUID, page: int = 1, limit: int = 20) -> Tuple[List[CreditScoreHistory], int]:
        query = self.db.query(CreditScoreHistory).filter(CreditScoreHistory.user_id == user_id)
        total = query.count()
        items = (
            query.order_by(CreditScoreHistory.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def update(self, *args: Any, **kwargs: Any) -> None:
        raise LedgerImmutableError("Credit score history is append-only")

    def delete(self, *args: Any, **kwargs: Any) -> None:
        raise LedgerImmutableError("Credit score history is append-only")


class SystemConfigRepository:
    """Read access to policy documents, plus idempotent seeding"""

    def __init__(self, db: Session):
        self.db = db

    def get_value(self, category: str, key: str, default: Any = None) -> Any:
        row = (
            self.db.query(SystemConfig)
            .filter(SystemConfig.category == category, SystemConfig.key == key)
            .first()
        )
        if row is None or row.value is None:
            return default
        return row.value

    def insert_if_missing(self, category: str, key: str, value: Any, description: str | None = None) -> bool:
        """Create the entry unless it exists; returns True when written"""
        exists = (
            self.db.query(SystemConfig.id)
            .filter(SystemConfig.category == category, SystemConfig.key == key)
            .first()
        )
        if exists:
            return False
        self.db.add(SystemConfig(category=category, key=key, value=value, description=description))
        self.db.flush()
        return True
