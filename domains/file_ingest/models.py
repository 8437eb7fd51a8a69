"""Event, task and notification models for the file ingestion domain."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from app.models.schemas import FileFingerprint, Insight
from app.utils.helpers import generate_uuid


class FileEventType(str, Enum):
    """Types of filesystem changes emitted by a watch session."""

    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"


@dataclass(frozen=True)
class FileEvent:
    """A single normalized change observed under a watch source."""

    type: FileEventType
    path: Path
    source_id: str


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed-retryable"
    FAILED_TERMINAL = "failed-terminal"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED_TERMINAL)


class FailureKind(str, Enum):
    """Terminal error classification carried by ``task-failed``."""

    RETRIES_EXHAUSTED = "retries-exhausted"
    PERMANENT = "permanent"
    STORE = "store"
    SHUTDOWN = "shutdown"


@dataclass
class Task:
    """One unit of admitted analysis work. Never persisted."""

    path: Path
    source_id: str
    lens: str
    signature: FileFingerprint
    attempt: int = 0
    state: TaskState = TaskState.PENDING
    id: str = field(default_factory=generate_uuid)
    last_error: Optional[str] = None


@dataclass(frozen=True)
class TaskCompleted:
    """Payload of a ``task-completed`` notification."""

    task_id: str
    path: Path
    source_id: str
    insights: List[Insight]
    attempts: int


@dataclass(frozen=True)
class TaskFailed:
    """Payload of a ``task-failed`` notification."""

    task_id: str
    path: Path
    source_id: str
    kind: FailureKind
    error: str
    attempts: int
