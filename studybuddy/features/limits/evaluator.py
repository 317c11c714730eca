"""
studybuddy/features/limits/evaluator.py

Pure limit evaluation: (request, tier, current usage) -> EvaluationResult.

No I/O and no exceptions for normal denials.
"""

from studybuddy.models.evaluation import EvaluationReason, EvaluationResult
from studybuddy.models.tier import TierDefinition, UNLIMITED, UNLIMITED_LABEL
from studybuddy.models.usage import ActionRequest


def evaluate(request: ActionRequest, tier: TierDefinition, current_usage: int) -> EvaluationResult:
    """
    Decide whether a request fits the tier's limit.

    - Quota unknown to the tier: denied (fail closed).
    - Limit -1: allowed, remaining unlimited.
    - Otherwise allowed iff limit - usage >= amount. Allowed results report
      post-consumption remaining; denials report pre-consumption remaining
      clamped to zero.
    """
    limit = tier.limit_for(request.quota_name)

    if limit is None:
        return EvaluationResult(
            allowed=False,
            remaining=0,
            limit=0,
            reason=EvaluationReason.UNKNOWN_QUOTA,
            quota_name=request.quota_name,
            current_usage=current_usage,
            requested=request.amount,
        )

    if limit == UNLIMITED:
        return EvaluationResult(
            allowed=True,
            remaining=UNLIMITED_LABEL,
            limit=UNLIMITED_LABEL,
            reason=EvaluationReason.OK,
            quota_name=request.quota_name,
            current_usage=current_usage,
            requested=request.amount,
        )

    remaining = limit - current_usage
    if remaining >= request.amount:
        return EvaluationResult(
            allowed=True,
            remaining=remaining - request.amount,
            limit=limit,
            reason=EvaluationReason.OK,
            quota_name=request.quota_name,
            current_usage=current_usage,
            requested=request.amount,
        )

    return EvaluationResult(
        allowed=False,
        remaining=max(0, remaining),
        limit=limit,
        reason=EvaluationReason.QUOTA_EXCEEDED,
        quota_name=request.quota_name,
        current_usage=current_usage,
        requested=request.amount,
    )
