"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("queued", not "RunStatus.QUEUED")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters and request fields
- Typos become immediate errors instead of silent bugs
"""

import enum


class JobType(str, enum.Enum):
    COLLECTION = "collection"                          # collect raw answers only
    SCORING = "scoring"                                # hand existing answers to scoring
    COLLECTION_AND_SCORING = "collection_and_scoring"  # collect, then score if anything succeeded
    COLLECTION_RETRY = "collection_retry"              # re-run failed results inside a lookback window


class RunStatus(str, enum.Enum):
    QUEUED = "queued"                                # created, waiting for a worker
    RUNNING = "running"                              # claimed by exactly one worker
    COMPLETED = "completed"                          # every result terminal, zero failures
    COMPLETED_WITH_ERRORS = "completed_with_errors"  # partial batch failure or stage error
    FAILED = "failed"                                # nothing succeeded, or errored before starting

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RUN_STATUSES


TERMINAL_RUN_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.COMPLETED_WITH_ERRORS, RunStatus.FAILED}
)


class RunTrigger(str, enum.Enum):
    SCHEDULER = "scheduler"  # cron slot fired
    MANUAL = "manual"        # operator pressed "run now"
    ONE_OFF = "one_off"      # disabled one-off job created for a single run
    RETRY = "retry"          # operator "retry failures" (ad-hoc, no parent job)


class ExecutionStatus(str, enum.Enum):
    PENDING = "pending"      # row created, provider not called yet
    RUNNING = "running"      # provider called; async providers stay here until swept
    COMPLETED = "completed"  # raw answer stored
    FAILED = "failed"        # chain exhausted or hard provider error

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class ErrorKind(str, enum.Enum):
    TRANSIENT = "transient"  # timeout, rate limit, 5xx: eligible for provider fallback
    HARD = "hard"            # auth, malformed request: fail without fallback


class Stage(str, enum.Enum):
    SETUP = "setup"
    COLLECTION = "collection"
    SCORING = "scoring"
