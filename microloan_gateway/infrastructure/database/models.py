"""SQLAlchemy ORM models for users, loans, transactions and the credit score ledger"""

import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from microloan_gateway.domain.models import (
    LoanStatus,
    Network,
    PaymentMethod,
    RepaymentStatus,
    ScoreReason,
    TransactionStatus,
    TransactionType,
)

Base = declarative_base()


def _enum(enum_cls, name: str) -> Enum:
    """Store enum values (not member names) as plain strings"""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


def _money(**kwargs) -> Column:
    return Column(Numeric(15, 2, asdecimal=True), **kwargs)


class User(Base):
    """Credit subject with its aggregate credit state"""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone = Column(Text, nullable=False, unique=True)
    email = Column(Text, nullable=True, unique=True)
    status = Column(Text, nullable=False, default="active")
    credit_score = Column(Integer, nullable=False, default=0)
    credit_limit = _money(nullable=False, default=0)
    auto_limit_enabled = Column(Boolean, nullable=False, default=False)
    total_loans = Column(Integer, nullable=False, default=0)
    total_borrowed = _money(nullable=False, default=0)
    total_repaid = _money(nullable=False, default=0)
    repayment_status = Column(_enum(RepaymentStatus, "repayment_status"), nullable=False, default=RepaymentStatus.NONE)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    loans = relationship("Loan", back_populates="user")

    __mapper_args__ = {"version_id_col": version}


class Loan(Base):
    """Loan with its lifecycle status and repayment bookkeeping"""

    __tablename__ = "loans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(Text, nullable=False, unique=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    user_phone = Column(Text, nullable=False)
    user_email = Column(Text, nullable=True)
    amount = _money(nullable=False)
    disbursed_amount = _money(nullable=True)
    interest_rate = Column(Numeric(5, 2, asdecimal=True), nullable=False)
    repayment_period = Column(Integer, nullable=False)
    amount_due = _money(nullable=False)
    amount_paid = _money(nullable=False, default=0)
    outstanding_amount = _money(nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(_enum(LoanStatus, "loan_status"), nullable=False, default=LoanStatus.REQUESTED, index=True)
    network = Column(_enum(Network, "network"), nullable=False, index=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Text, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_by = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    defaulted_at = Column(DateTime(timezone=True), nullable=True)
    details = Column("metadata", JSON, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="loans")
    transactions = relationship("Transaction", back_populates="loan")

    __mapper_args__ = {"version_id_col": version}


class Transaction(Base):
    """Money movement tied to a loan; pending until reconciled once"""

    __tablename__ = "transactions"
    __table_args__ = (UniqueConstraint("type", "reference", name="uq_transactions_type_reference"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(Text, nullable=False, unique=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=True, index=True)
    type = Column(_enum(TransactionType, "transaction_type"), nullable=False)
    status = Column(_enum(TransactionStatus, "transaction_status"), nullable=False, default=TransactionStatus.PENDING, index=True)
    amount = _money(nullable=False)
    payment_method = Column(_enum(PaymentMethod, "payment_method"), nullable=True)
    reference = Column(Text, nullable=True, index=True)
    network = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
    reconciled_by = Column(Text, nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    loan = relationship("Loan", back_populates="transactions")


class CreditScoreHistory(Base):
    """Append-only ledger of score awards, at most one per transaction"""

    __tablename__ = "credit_score_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=True, index=True)
    transaction_id = Column(UUID(as_uuid=True), ForeignKey("transactions.id"), nullable=True, unique=True)
    previous_score = Column(Integer, nullable=False)
    new_score = Column(Integer, nullable=False)
    points_awarded = Column(Integer, nullable=False)
    reason = Column(_enum(ScoreReason, "score_reason"), nullable=False)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)


class SystemConfig(Base):
    """Externally managed policy documents keyed by (category, key)"""

    __tablename__ = "system_config"
    __table_args__ = (UniqueConstraint("category", "key", name="uq_system_config_category_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    category = Column(Text, nullable=False)
    key = Column(Text, nullable=False)
    value = Column(JSON, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
