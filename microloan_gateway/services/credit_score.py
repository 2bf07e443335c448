"""Read side of the credit state: score history and loan eligibility"""

import uuid
from decimal import Decimal

from sqlalchemy.orm import Session

from microloan_gateway.domain.exceptions import NotFoundError, ValidationError
from microloan_gateway.domain.lifecycle import available_credit, to_money
from microloan_gateway.domain.models import Page
from microloan_gateway.infrastructure.database.models import CreditScoreHistory, User
from microloan_gateway.infrastructure.database.repositories import (
    CreditScoreHistoryRepository,
    LoanRepository,
    UserRepository,
)
from microloan_gateway.services.credit_policy import CreditPolicy
from microloan_gateway.utils.identifiers import parse_uuid


class CreditScoreService:
    def __init__(self, db: Session):
        self.users = UserRepository(db)
        self.loans = LoanRepository(db)
        self.ledger = CreditScoreHistoryRepository(db)
        self.policy = CreditPolicy(db)

    def get_user(self, user_id: str | uuid.UUID) -> User:
        user = self.users.get(parse_uuid(user_id, "User"))
        if user is None:
            raise NotFoundError("User", str(user_id))
        return user

    def get_credit_score_history(self, user_id: str | uuid.UUID, page: int = 1, limit: int = 20) -> Page[CreditScoreHistory]:
        """Ledger entries for a user, newest first"""
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")
        user = self.get_user(user_id)
        items, total = self.ledger.list_for_user(user.id, page=page, limit=limit)
        return Page(data=items, total=total, page=page, limit=limit)

    def calculate_eligible_amount(self, user_id: str | uuid.UUID) -> Decimal:
        """
        Largest new loan the user could request right now.

        The score threshold amount (or the first-time amount for users with
        no loans) is capped by the stored credit limit unless auto-limit
        manages that limit, then reduced by outstanding on active loans.
        """
        user = self.get_user(user_id)
        eligible = to_money(self.policy.limit_for(int(user.credit_score or 0), (user.total_loans or 0) == 0))
        if not user.auto_limit_enabled:
            eligible = min(eligible, to_money(user.credit_limit or 0))
        return available_credit(eligible, self.loans.active_outstanding(user.id))
