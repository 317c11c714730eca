"""
studybuddy/features/limits/service.py

Quota enforcement (check-then-increment as one logical unit).

Handles:
- Read-only checks against a fresh usage read
- Consumption with optimistic concurrency (conditional increment + bounded retry)
- Reserve-then-commit for guarded actions (units held before the action
  runs, failed actions are never charged)
- Usage summaries for display
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from studybuddy.core.config import settings
from studybuddy.core.errors import ConcurrentUpdateConflict, StoreUnavailableError
from studybuddy.core.logging import log_event
from studybuddy.features.limits.evaluator import evaluate
from studybuddy.features.tiers.catalog import format_limit
from studybuddy.features.usage.service import UsageLedger, period_key_for
from studybuddy.models.evaluation import EvaluationResult
from studybuddy.models.tier import TierDefinition, UNLIMITED, UNLIMITED_LABEL
from studybuddy.models.usage import ActionRequest, UsagePeriod


logger = logging.getLogger("studybuddy")


@dataclass(frozen=True)
class GuardedOutcome:
    result: EvaluationResult
    value: Any
    charged: bool


def _log_decision(request: ActionRequest, tier: TierDefinition, result: EvaluationResult, period_key: str) -> None:
    extra = {
        "period_key": period_key,
        "requested": request.amount,
        "current_usage": result.current_usage,
        "limit": result.limit,
        "remaining": result.remaining,
    }
    if result.allowed:
        log_event("info", "[quota] ALLOW", user_id=request.user_id, tier_id=tier.tier_id, quota_name=request.quota_name, extra=extra)
    else:
        log_event(
            "warning",
            "[quota] DENY",
            user_id=request.user_id,
            tier_id=tier.tier_id,
            quota_name=request.quota_name,
            error_code=result.reason.value,
            extra=extra,
        )


class QuotaEnforcer:
    """
    Gate for every quota-consuming action.

    Denials are returned as data; only infrastructure failures raise
    (StoreUnavailableError), and callers must then deny.
    """

    def __init__(
        self,
        ledger: Optional[UsageLedger] = None,
        max_retries: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger = ledger or UsageLedger()
        self.max_retries = max_retries if max_retries is not None else settings.QUOTA_MAX_RETRIES
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def current_period_key(self) -> str:
        return period_key_for(self._clock())

    def check(self, request: ActionRequest, tier: TierDefinition, period_key: Optional[str] = None) -> EvaluationResult:
        """Evaluate without consuming. Units held by in-flight guarded actions count as used."""
        period_key = period_key or self.current_period_key()
        held = self.ledger.get_held(request.user_id, period_key, request.quota_name)
        return evaluate(request, tier, held)

    def consume(self, request: ActionRequest, tier: TierDefinition, period_key: Optional[str] = None) -> EvaluationResult:
        """
        Evaluate against a fresh read and commit the increment conditionally.

        If usage moved between read and commit, re-read and re-evaluate, up
        to max_retries attempts; then raise StoreUnavailableError.
        """
        period_key = period_key or self.current_period_key()
        # Unlimited quotas have nothing to overshoot: plain atomic add
        unlimited = tier.limit_for(request.quota_name) == UNLIMITED

        def commit(held: int) -> None:
            self.ledger.increment(
                request.user_id,
                period_key,
                request.quota_name,
                request.amount,
                expected=None if unlimited else held,
            )

        return self._evaluate_and_write(request, tier, period_key, commit)

    def _evaluate_and_write(
        self,
        request: ActionRequest,
        tier: TierDefinition,
        period_key: str,
        write: Callable[[int], None],
    ) -> EvaluationResult:
        """Read, evaluate, and on allow run a conditional write; retry on conflict."""
        for attempt in range(1, self.max_retries + 1):
            held = self.ledger.get_held(request.user_id, period_key, request.quota_name)
            result = evaluate(request, tier, held)
            if not result.allowed:
                _log_decision(request, tier, result, period_key)
                return result

            try:
                write(held)
            except ConcurrentUpdateConflict:
                logger.info(
                    "[quota] conflict, retrying",
                    extra={"user_id": request.user_id, "quota_name": request.quota_name, "attempt": attempt},
                )
                continue

            _log_decision(request, tier, result, period_key)
            return result

        logger.error(
            "[quota] retries exhausted",
            extra={"user_id": request.user_id, "quota_name": request.quota_name, "attempts": self.max_retries},
        )
        raise StoreUnavailableError(details={"quota_name": request.quota_name, "attempts": self.max_retries})

    def run_guarded(
        self,
        request: ActionRequest,
        tier: TierDefinition,
        action: Callable[[], Any],
        period_key: Optional[str] = None,
    ) -> GuardedOutcome:
        """
        Reserve-then-commit.

        The units are reserved (conditionally, with the same retry loop as
        consume) before the action runs, so concurrent guarded actions can
        never run past the limit. On success the reservation becomes usage;
        if the action raises, the reservation is released and the exception
        propagates uncharged.
        """
        period_key = period_key or self.current_period_key()

        if tier.limit_for(request.quota_name) == UNLIMITED:
            value = action()
            return GuardedOutcome(result=self.consume(request, tier, period_key), value=value, charged=True)

        def hold(held: int) -> None:
            self.ledger.reserve(request.user_id, period_key, request.quota_name, request.amount, expected=held)

        reserved = self._evaluate_and_write(request, tier, period_key, hold)
        if not reserved.allowed:
            return GuardedOutcome(result=reserved, value=None, charged=False)

        committed = False
        try:
            value = action()
            self.ledger.settle_reservation(request.user_id, period_key, request.quota_name, request.amount, commit=True)
            committed = True
        finally:
            if not committed:
                logger.warning(
                    "[quota] guarded action failed, reservation released",
                    extra={"user_id": request.user_id, "tier_id": tier.tier_id, "quota_name": request.quota_name},
                )
                self.ledger.settle_reservation(
                    request.user_id, period_key, request.quota_name, request.amount, commit=False
                )
        return GuardedOutcome(result=reserved, value=value, charged=True)


def usage_summary(tier: TierDefinition, period: UsagePeriod, near_limit_ratio: float = 0.10) -> Dict[str, dict]:
    """Per-quota used / limit / remaining / percentage / status for display."""
    summary = {}
    for quota_name, limit in tier.limits.items():
        used = period.used(quota_name)
        if limit == UNLIMITED:
            summary[quota_name] = {
                "used": used,
                "limit": UNLIMITED_LABEL,
                "remaining": UNLIMITED_LABEL,
                "percentage": 0,
                "status": "ok",
                "display": format_limit(limit, quota_name),
            }
            continue

        remaining = max(0, limit - used)
        percentage = min(100.0, round(used / limit * 100, 1)) if limit > 0 else 100.0
        if used >= limit:
            status = "at_limit"
        elif remaining <= limit * near_limit_ratio:
            status = "approaching_limit"
        else:
            status = "ok"

        summary[quota_name] = {
            "used": used,
            "limit": limit,
            "remaining": remaining,
            "percentage": percentage,
            "status": status,
            "display": format_limit(limit, quota_name),
        }
    return summary


_enforcer: Optional[QuotaEnforcer] = None


def get_quota_enforcer() -> QuotaEnforcer:
    """FastAPI dependency: process-wide enforcer on the configured store."""
    global _enforcer
    if _enforcer is None:
        _enforcer = QuotaEnforcer()
    return _enforcer


def reset_quota_enforcer() -> None:
    """FOR TESTING ONLY."""
    global _enforcer
    _enforcer = None
