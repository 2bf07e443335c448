"""Credit scoring policy - pure functions mapping repayment events and scores to outcomes"""

import math
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Sequence

from microloan_gateway.domain.exceptions import InvalidPolicyError
from microloan_gateway.domain.models import (
    AmountTier,
    CreditThreshold,
    DurationTier,
    RepaymentScoringPolicy,
    ScoreAward,
    ScoreBand,
    ScoreBounds,
    ScoreReason,
)

DEFAULT_REPAYMENT_SCORING: Dict[str, Any] = {
    "basePoints": 50,
    "amountMultipliers": [
        {"minAmount": 0, "maxAmount": 1000, "multiplier": 0.5},
        {"minAmount": 1001, "maxAmount": 5000, "multiplier": 1.0},
        {"minAmount": 5001, "maxAmount": 10000, "multiplier": 1.5},
        {"minAmount": 10001, "maxAmount": 999999, "multiplier": 2.0},
    ],
    "durationMultipliers": [
        {"minDays": 0, "maxDays": 7, "multiplier": 2.0},
        {"minDays": 8, "maxDays": 14, "multiplier": 1.5},
        {"minDays": 15, "maxDays": 30, "multiplier": 1.0},
        {"minDays": 31, "maxDays": 60, "multiplier": 0.75},
        {"minDays": 61, "maxDays": 999, "multiplier": 0.5},
    ],
    "maxPointsPerTransaction": 500,
    "enablePartialRepayments": True,
    "minPointsForPartialRepayment": 5,
}

DEFAULT_CREDIT_THRESHOLDS: List[Dict[str, float]] = [
    {"score": 0, "amount": 500},
    {"score": 1000, "amount": 1000},
]


def parse_scoring_policy(document: Mapping[str, Any]) -> RepaymentScoringPolicy:
    """
    Decode the repayment_scoring config document into a typed policy.

    Raises:
        InvalidPolicyError: When a required key is missing or a tier is malformed
    """
    try:
        amount_tiers = [
            AmountTier(
                min_amount=float(tier["minAmount"]),
                max_amount=float(tier["maxAmount"]),
                multiplier=float(tier["multiplier"]),
            )
            for tier in document.get("amountMultipliers", [])
        ]
        duration_tiers = [
            DurationTier(
                min_days=int(tier["minDays"]),
                max_days=int(tier["maxDays"]),
                multiplier=float(tier["multiplier"]),
            )
            for tier in document.get("durationMultipliers", [])
        ]
        return RepaymentScoringPolicy(
            base_points=float(document["basePoints"]),
            amount_multipliers=sorted(amount_tiers, key=lambda t: t.min_amount),
            duration_multipliers=sorted(duration_tiers, key=lambda t: t.min_days),
            max_points_per_transaction=float(document.get("maxPointsPerTransaction") or 0),
            enable_partial_repayments=bool(document.get("enablePartialRepayments", True)),
            min_points_for_partial_repayment=float(document.get("minPointsForPartialRepayment") or 0),
            full_repayment_bonus=float(document.get("fullRepaymentBonus") or 0),
            full_repayment_fixed_bonus=float(document.get("fullRepaymentFixedBonus") or 0),
            prorate_partial_repayments=bool(document.get("proratePartialRepayments", False)),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise InvalidPolicyError(f"Invalid repayment scoring policy: {e}") from e


def _select_multiplier(value: float, tiers: Sequence, low_attr: str, high_attr: str) -> float:
    """
    Pick the multiplier of the tier containing value.

    Tiers are treated as open-ended at both extremes: a value above every
    range falls into the highest tier whose lower bound it reaches, a value
    below the lowest bound falls into the lowest tier.
    """
    if not tiers:
        return 1.0

    ordered = sorted(tiers, key=lambda t: getattr(t, low_attr))
    for tier in ordered:
        if getattr(tier, low_attr) <= value <= getattr(tier, high_attr):
            return tier.multiplier

    reachable = [t for t in ordered if getattr(t, low_attr) <= value]
    if reachable:
        return reachable[-1].multiplier
    return ordered[0].multiplier


def amount_multiplier(amount: float, tiers: Sequence[AmountTier]) -> float:
    return _select_multiplier(amount, tiers, "min_amount", "max_amount")


def duration_multiplier(days: int, tiers: Sequence[DurationTier]) -> float:
    return _select_multiplier(days, tiers, "min_days", "max_days")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_award(
    repayment_amount: Decimal | float,
    loan_amount: Decimal | float,
    days_elapsed: int,
    is_full_repayment: bool,
    is_partial: bool,
    policy: RepaymentScoringPolicy,
) -> ScoreAward:
    """
    Compute the credit score points earned by a single repayment.

    Scoring:
    - raw = basePoints * amountMultiplier * durationMultiplier
    - Full repayments may earn a multiplicative and a fixed bonus
    - Capped at maxPointsPerTransaction, rounded half-up
    - Partial repayments earn 0 when disabled by policy or when the award
      falls below minPointsForPartialRepayment

    Pure function: same inputs always produce the same award.
    """
    reason = ScoreReason.LOAN_COMPLETED if is_full_repayment else ScoreReason.PARTIAL_REPAYMENT
    amount = float(repayment_amount)
    principal = float(loan_amount)

    breakdown: Dict[str, Any] = {
        "repaymentAmount": amount,
        "loanAmount": principal,
        "durationDays": days_elapsed,
        "isPartialRepayment": is_partial,
        "basePoints": policy.base_points,
    }

    if amount <= 0:
        breakdown["suppressed"] = "invalid_amount"
        return ScoreAward(points=0, reason=reason, breakdown=breakdown)

    amount_mult = amount_multiplier(amount, policy.amount_multipliers)
    duration_mult = duration_multiplier(days_elapsed, policy.duration_multipliers)
    raw_points = policy.base_points * amount_mult * duration_mult
    breakdown.update(
        amountMultiplier=amount_mult,
        durationMultiplier=duration_mult,
        calculatedPoints=raw_points,
    )

    points = raw_points
    if is_partial and policy.prorate_partial_repayments and principal > 0:
        repayment_share = amount / principal
        points *= repayment_share
        breakdown["repaymentPercentage"] = repayment_share

    if is_full_repayment:
        if policy.full_repayment_bonus > 0:
            points *= policy.full_repayment_bonus
            breakdown["fullRepaymentBonus"] = policy.full_repayment_bonus
        if policy.full_repayment_fixed_bonus > 0:
            points += policy.full_repayment_fixed_bonus
            breakdown["fullRepaymentFixedBonus"] = policy.full_repayment_fixed_bonus

    capped = policy.max_points_per_transaction > 0 and points > policy.max_points_per_transaction
    if capped:
        points = policy.max_points_per_transaction
    breakdown["capped"] = capped

    final_points = _round_half_up(points)

    if is_partial and not policy.enable_partial_repayments:
        breakdown["suppressed"] = "partial_repayments_disabled"
        final_points = 0
    elif is_partial and final_points < policy.min_points_for_partial_repayment:
        breakdown["suppressed"] = "below_minimum_threshold"
        breakdown["minPointsForPartialRepayment"] = policy.min_points_for_partial_repayment
        final_points = 0

    breakdown["finalPoints"] = final_points
    return ScoreAward(points=final_points, reason=reason, breakdown=breakdown)


def clamp_score(score: int, bounds: ScoreBounds) -> int:
    return max(bounds.min_score, min(bounds.max_score, score))


def parse_thresholds(raw: Sequence[Mapping[str, Any]]) -> List[CreditThreshold]:
    try:
        return [CreditThreshold(score=int(t["score"]), amount=float(t["amount"])) for t in raw]
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidPolicyError(f"Invalid credit score thresholds: {e}") from e


def limit_for_score(
    score: int,
    thresholds: Sequence[CreditThreshold],
    is_first_time_user: bool,
    first_time_amount: float,
) -> float:
    """
    Map a credit score to the loan amount it qualifies for.

    Step function over thresholds: the highest threshold whose score the user
    reaches wins, so the limit never decreases as the score grows. First-time
    borrowers get the flat first-time amount.
    """
    if is_first_time_user:
        return max(first_time_amount, 0.0)

    eligible = 0.0
    for threshold in sorted(thresholds, key=lambda t: t.score, reverse=True):
        if score >= threshold.score:
            eligible = threshold.amount
            break
    return max(eligible, 0.0)


def parse_score_bands(raw: Sequence[Mapping[str, Any]], value_key: str) -> List[ScoreBand]:
    try:
        return [
            ScoreBand(min_score=int(b["minScore"]), max_score=int(b["maxScore"]), value=float(b[value_key]))
            for b in raw
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidPolicyError(f"Invalid score bands for {value_key}: {e}") from e


def value_for_score(
    score: int,
    bands: Sequence[ScoreBand],
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    """Look up a loan term (interest rate or period) for a score, clamped to [minimum, maximum]"""
    value = default
    for band in bands:
        if band.min_score <= score <= band.max_score:
            value = band.value
            break
    return max(minimum, min(maximum, value))
