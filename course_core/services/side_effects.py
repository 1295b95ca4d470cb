"""Best-effort side effects that follow a committed write.

The ledger and the lifecycle manager commit their own record first and
only then talk to collaborators: the certificate issuer, the achievement
checker, the audit log.  Those calls are allowed to fail.  A learner who
finished a course has finished it even if the certificate service is
down; a course that was published stays published if the audit sink
times out.

SideEffectBatch runs each effect in order, catches its exception, logs
it with context, counts it in side_effect_failures_total, and records
the outcome.  The caller reads outcomes afterwards (e.g. to find the
certificate id) and never sees an exception.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from course_core.core.errors import DownstreamFailure
from course_core.core.metrics import SIDE_EFFECT_FAILURES

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SideEffectOutcome:
    effect: str
    value: Any = None
    failure: DownstreamFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class SideEffectBatch:
    def __init__(self, **log_context: Any) -> None:
        self._log_context = log_context
        self.outcomes: list[SideEffectOutcome] = []

    async def run(
        self, effect: str, call: Callable[[], Awaitable[Any]]
    ) -> SideEffectOutcome:
        try:
            value = await call()
        except Exception as exc:
            failure = DownstreamFailure(effect, exc)
            SIDE_EFFECT_FAILURES.labels(effect=effect).inc()
            logger.error(
                "Side effect %s failed: %s",
                effect,
                exc,
                exc_info=True,
                extra={**self._log_context, "effect": effect},
            )
            outcome = SideEffectOutcome(effect=effect, failure=failure)
        else:
            outcome = SideEffectOutcome(effect=effect, value=value)
        self.outcomes.append(outcome)
        return outcome

    @property
    def failures(self) -> list[DownstreamFailure]:
        return [o.failure for o in self.outcomes if o.failure is not None]
