"""Typed access to the credit policy documents kept in system_config"""

from typing import Any, Dict, List

from sqlalchemy.orm import Session

from microloan_gateway.config import settings
from microloan_gateway.domain.models import RepaymentScoringPolicy, ScoreBounds
from microloan_gateway.domain.scoring import (
    DEFAULT_CREDIT_THRESHOLDS,
    DEFAULT_REPAYMENT_SCORING,
    limit_for_score,
    parse_score_bands,
    parse_scoring_policy,
    parse_thresholds,
    value_for_score,
)
from microloan_gateway.infrastructure.database.repositories import SystemConfigRepository


DEFAULT_INTEREST_RATE_TIERS: List[Dict[str, Any]] = [
    {"minScore": 0, "maxScore": 500, "rate": 10},
    {"minScore": 501, "maxScore": 1000, "rate": 7},
    {"minScore": 1001, "maxScore": 9999, "rate": 5},
]

DEFAULT_REPAYMENT_PERIOD_OPTIONS: List[Dict[str, Any]] = [
    {"minScore": 0, "maxScore": 500, "period": 14},
    {"minScore": 501, "maxScore": 1000, "period": 30},
    {"minScore": 1001, "maxScore": 9999, "period": 60},
]


class CreditPolicy:
    """Reads policy documents on every call so admin edits apply to the next event"""

    def __init__(self, db: Session):
        self.config = SystemConfigRepository(db)

    def scoring_policy(self) -> RepaymentScoringPolicy:
        document = self.config.get_value("credit_score", "repayment_scoring", DEFAULT_REPAYMENT_SCORING)
        return parse_scoring_policy(document)

    def score_bounds(self) -> ScoreBounds:
        return ScoreBounds(
            min_score=int(self.config.get_value("credit_score", "min_score", settings.min_score)),
            max_score=int(self.config.get_value("credit_score", "max_score", settings.max_score)),
        )

    def limit_for(self, score: int, is_first_time_user: bool) -> float:
        thresholds = parse_thresholds(
            self.config.get_value("credit_score", "thresholds", DEFAULT_CREDIT_THRESHOLDS)
        )
        first_time_amount = float(
            self.config.get_value("loan", "first_time_user_amount", settings.first_time_user_amount)
        )
        return limit_for_score(score, thresholds, is_first_time_user, first_time_amount)

    def interest_rate_for(self, score: int) -> float:
        bands = parse_score_bands(
            self.config.get_value("loan", "interest_rate.tiers", DEFAULT_INTEREST_RATE_TIERS), "rate"
        )
        return value_for_score(
            score,
            bands,
            default=float(self.config.get_value("loan", "interest_rate.default", settings.default_interest_rate)),
            minimum=float(self.config.get_value("loan", "interest_rate.min", 1)),
            maximum=float(self.config.get_value("loan", "interest_rate.max", 20)),
        )

    def repayment_period_for(self, score: int) -> int:
        bands = parse_score_bands(
            self.config.get_value("loan", "repayment_period.options", DEFAULT_REPAYMENT_PERIOD_OPTIONS), "period"
        )
        return int(
            value_for_score(
                score,
                bands,
                default=float(
                    self.config.get_value("loan", "repayment_period.default", settings.default_repayment_period_days)
                ),
                minimum=float(self.config.get_value("loan", "repayment_period.min", 7)),
                maximum=float(self.config.get_value("loan", "repayment_period.max", 90)),
            )
        )
