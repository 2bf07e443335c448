"""Default policy documents for system_config; existing keys are left untouched"""

import logging
from typing import Any, List, Tuple

from sqlalchemy.orm import Session

from microloan_gateway.config import settings
from microloan_gateway.domain.scoring import DEFAULT_CREDIT_THRESHOLDS, DEFAULT_REPAYMENT_SCORING
from microloan_gateway.infrastructure.database.repositories import SystemConfigRepository
from microloan_gateway.services.credit_policy import (
    DEFAULT_INTEREST_RATE_TIERS,
    DEFAULT_REPAYMENT_PERIOD_OPTIONS,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: List[Tuple[str, str, Any, str]] = [
    ("credit_score", "repayment_scoring", DEFAULT_REPAYMENT_SCORING, "Multiplier-based repayment scoring"),
    ("credit_score", "thresholds", DEFAULT_CREDIT_THRESHOLDS, "Loan amount unlocked at each credit score"),
    ("credit_score", "min_score", settings.min_score, "Lowest credit score a user can hold"),
    ("credit_score", "max_score", settings.max_score, "Highest credit score a user can hold"),
    ("loan", "first_time_user_amount", settings.first_time_user_amount, "Loan amount offered to users without loans"),
    ("loan", "interest_rate.default", settings.default_interest_rate, "Default interest rate percentage applied when not specified"),
    ("loan", "interest_rate.min", 1, "Minimum allowed interest rate percentage"),
    ("loan", "interest_rate.max", 20, "Maximum allowed interest rate percentage"),
    ("loan", "interest_rate.tiers", DEFAULT_INTEREST_RATE_TIERS, "Interest rate tiers based on credit score ranges"),
    ("loan", "repayment_period.default", settings.default_repayment_period_days, "Default repayment period in days when not specified"),
    ("loan", "repayment_period.min", 7, "Minimum allowed repayment period in days"),
    ("loan", "repayment_period.max", 90, "Maximum allowed repayment period in days"),
    ("loan", "repayment_period.options", DEFAULT_REPAYMENT_PERIOD_OPTIONS, "Repayment period options based on credit score ranges"),
]


def seed_default_config(db: Session) -> int:
    """Insert every missing default and commit; returns the number of keys written"""
    repo = SystemConfigRepository(db)
    created = 0
    for category, key, value, description in DEFAULT_CONFIG:
        if repo.insert_if_missing(category, key, value, description):
            created += 1
        else:
            logger.debug("Config already present", extra={"category": category, "key": key})
    db.commit()
    logger.info(
        "Seeded system config",
        extra={"keys_created": created, "keys_skipped": len(DEFAULT_CONFIG) - created},
    )
    return created


if __name__ == "__main__":
    from microloan_gateway.infrastructure.database.models import Base
    from microloan_gateway.infrastructure.database.session import SessionLocal, engine
    from microloan_gateway.infrastructure.observability.logging import setup_logging

    setup_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed_default_config(session)
    finally:
        session.close()
