"""Achievement checks triggered by course completions.

The ledger reports what a completion changed as a stats delta
(courses completed, assessments passed, perfect scores, XP).  The
checker folds the delta into the learner's running stats and unlocks
every achievement whose requirement is now met.

Two checkers ship here:

  QueuedAchievementChecker: what the API uses.  Pushes the delta onto
    the `achievement_check` queue and returns; the worker process runs
    the evaluation.  Fire-and-forget from the ledger's point of view.

  AchievementTracker: evaluates in process.  The worker wraps one, and
    tests use it directly.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Protocol, runtime_checkable

from course_core.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

ACHIEVEMENT_QUEUE = "achievement_check"


@dataclass(frozen=True, slots=True)
class UserStats:
    courses_completed: int = 0
    assessments_passed: int = 0
    perfect_scores: int = 0
    total_xp: int = 0

    def merge(self, delta: UserStats) -> UserStats:
        return UserStats(
            **{
                f.name: getattr(self, f.name) + getattr(delta, f.name)
                for f in fields(self)
            }
        )


@dataclass(frozen=True, slots=True)
class AchievementRule:
    id: str
    stat: str
    requirement: int


ACHIEVEMENT_RULES: tuple[AchievementRule, ...] = (
    AchievementRule("first-steps", "courses_completed", 1),
    AchievementRule("learning-specialist-i", "courses_completed", 5),
    AchievementRule("learning-specialist-ii", "courses_completed", 10),
    AchievementRule("learning-specialist-iii", "courses_completed", 15),
    AchievementRule("learning-master", "courses_completed", 25),
    AchievementRule("first-try", "assessments_passed", 1),
    AchievementRule("perfect-score", "perfect_scores", 1),
)


@dataclass(frozen=True, slots=True)
class UnlockedAchievement:
    achievement_id: str
    tenant_id: str
    user_id: str
    unlocked_at: int


def pending_unlocks(stats: UserStats, unlocked: set[str]) -> list[str]:
    """Achievement ids whose requirement `stats` meets and are not yet unlocked."""
    return [
        rule.id
        for rule in ACHIEVEMENT_RULES
        if rule.id not in unlocked and getattr(stats, rule.stat) >= rule.requirement
    ]


@runtime_checkable
class AchievementChecker(Protocol):
    async def check_and_unlock(
        self, tenant_id: str, user_id: str, stats_delta: UserStats
    ) -> None: ...


@dataclass
class AchievementTracker:
    """In-process stats and unlocks, keyed by (tenant_id, user_id)."""

    stats: dict[tuple[str, str], UserStats] = field(default_factory=dict)
    unlocked: dict[tuple[str, str], list[UnlockedAchievement]] = field(
        default_factory=dict
    )

    async def check_and_unlock(
        self, tenant_id: str, user_id: str, stats_delta: UserStats
    ) -> list[UnlockedAchievement]:
        key = (tenant_id, user_id)
        merged = self.stats.get(key, UserStats()).merge(stats_delta)
        self.stats[key] = merged

        already = self.unlocked.setdefault(key, [])
        now = int(datetime.datetime.now(datetime.UTC).timestamp())
        newly = [
            UnlockedAchievement(
                achievement_id=achievement_id,
                tenant_id=tenant_id,
                user_id=user_id,
                unlocked_at=now,
            )
            for achievement_id in pending_unlocks(
                merged, {a.achievement_id for a in already}
            )
        ]
        already.extend(newly)
        for a in newly:
            logger.info(
                "Unlocked achievement=%s",
                a.achievement_id,
                extra={"tenant_id": tenant_id, "user_id": user_id},
            )
        return newly

    def unlocked_ids(self, tenant_id: str, user_id: str) -> list[str]:
        return [a.achievement_id for a in self.unlocked.get((tenant_id, user_id), [])]


class QueuedAchievementChecker:
    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def check_and_unlock(
        self, tenant_id: str, user_id: str, stats_delta: UserStats
    ) -> None:
        task = await self._queue.enqueue(
            ACHIEVEMENT_QUEUE,
            {
                "tenant_id": tenant_id,
                "user_id": user_id,
                "stats_delta": {
                    f.name: getattr(stats_delta, f.name) for f in fields(stats_delta)
                },
            },
        )
        logger.debug("Enqueued achievement check task=%s user=%s", task.id, user_id)


def stats_from_payload(payload: dict) -> UserStats:
    known = {f.name for f in fields(UserStats)}
    return replace(
        UserStats(), **{k: int(v) for k, v in payload.items() if k in known}
    )
