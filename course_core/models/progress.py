from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ProgressStatus(StrEnum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class AttemptState(StrEnum):
    OPEN = "open"
    COMPLETED = "completed"
    ABANDONED = "abandoned"  # superseded by a newer start before completion


@dataclass(frozen=True, slots=True)
class QuizSubmission:
    """One quiz result as submitted with an attempt."""

    quiz_id: str
    score: float
    completed_at: int


@dataclass(frozen=True, slots=True)
class QuizScore:
    """Best-ever result for a quiz across all attempts."""

    quiz_id: str
    score: float
    attempts: int
    completed_at: int


@dataclass(frozen=True, slots=True)
class Attempt:
    attempt_number: int
    started_at: int
    state: AttemptState = AttemptState.OPEN
    completed_at: int | None = None
    final_score: float = 0
    xp_earned: int = 0
    completed_lessons: frozenset[str] = frozenset()
    quiz_scores: tuple[QuizSubmission, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.state is AttemptState.OPEN


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """The ledger for one (tenant, user, course) triple.

    `attempts` is append-only and numbered 1..current_attempt.
    `open_attempt` names the single attempt still accepting a
    completion, or is None when every attempt is closed.  `version` is
    the optimistic-concurrency token the store checks on every write.
    """

    tenant_id: str
    user_id: str
    course_id: str
    last_accessed_at: int
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    progress: float = 0
    best_score: float = 0
    total_xp_earned: int = 0
    current_attempt: int = 0
    open_attempt: int | None = None
    attempts: tuple[Attempt, ...] = ()
    completed_lessons: frozenset[str] = frozenset()
    quiz_scores: dict[str, QuizScore] = field(default_factory=dict)
    certificate_earned: bool = False
    certificate_id: str | None = None
    assigned_by: str | None = None
    assigned_at: int | None = None
    version: int = 0

    @property
    def id(self) -> str:
        return f"progress-{self.user_id}-{self.course_id}"

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.user_id, self.course_id)

    def active_attempt(self) -> Attempt | None:
        """Return the open attempt numbered `current_attempt`, if any."""
        if self.open_attempt is None or self.open_attempt != self.current_attempt:
            return None
        attempt = self.attempts[self.open_attempt - 1]
        return attempt if attempt.is_open else None

    @staticmethod
    def new(
        *,
        tenant_id: str,
        user_id: str,
        course_id: str,
        now: int,
        assigned_by: str | None = None,
    ) -> ProgressRecord:
        return ProgressRecord(
            tenant_id=tenant_id,
            user_id=user_id,
            course_id=course_id,
            last_accessed_at=now,
            assigned_by=assigned_by,
            assigned_at=now if assigned_by is not None else None,
        )
