"""
Sync data models -- policy, statistics, and the notification records.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, Flag
from typing import Annotated, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, PlainValidator

from ..storage import Item


class EqualityMethod(Flag):
    """Ways to decide that a source file and a target file are the same.

    Matching by name is implicit. The empty set (NONE, spelled "name")
    means existence alone decides. ALWAYS_DIFFERENT (spelled "none") forces
    every source file to be copied.
    """

    NONE = 0
    LENGTH = 1
    LAST_WRITE_TIME = 2
    CONTENT_HASH = 4
    ALWAYS_DIFFERENT = 8

    DEFAULT = LENGTH | LAST_WRITE_TIME

    @classmethod
    def parse(cls, value: Union[str, int, list, tuple, set, "EqualityMethod"]) -> "EqualityMethod":
        """Parse ``"length,last_write_time"`` style values.

        Raises:
            ValueError: On an unknown method name.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            value = [part for part in value.replace("|", ",").split(",")]
        result = cls.NONE
        for part in value:
            key = str(part).strip().lower().replace("-", "_")
            if not key or key == "name":
                continue
            if key == "none":
                key = "always_different"
            try:
                result |= cls[key.upper()]
            except KeyError:
                raise ValueError(f"Unknown equality method: {part}") from None
        return result

    def names(self) -> list[str]:
        """Lower-case names of the single methods in this set."""
        return [m.name.lower() for m in SINGLE_METHODS if m in self]

    def label(self) -> str:
        return ",".join(self.names()) or "name"


SINGLE_METHODS = (
    EqualityMethod.LENGTH,
    EqualityMethod.LAST_WRITE_TIME,
    EqualityMethod.CONTENT_HASH,
    EqualityMethod.ALWAYS_DIFFERENT,
)

EqualityMethods = Annotated[
    EqualityMethod,
    PlainValidator(EqualityMethod.parse),
    PlainSerializer(lambda value: value.label(), return_type=str),
]


class SyncPolicy(BaseModel):
    """What a run is allowed to do. Immutable for the run's duration."""

    model_config = ConfigDict(frozen=True)

    create_directories: bool = True
    delete_directories: bool = False
    create_files: bool = True
    update_files: bool = True
    delete_files: bool = False
    retry_count: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=0.0, ge=0.0, description="Seconds between retries")
    equality_methods: EqualityMethods = EqualityMethod.DEFAULT


class RunStatistics(BaseModel):
    """Counters accumulated by one run."""

    directories_seen: int = 0
    directories_created: int = 0
    directories_deleted: int = 0
    files_seen: int = 0
    files_created: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    bytes_copied: int = 0


class ActionKind(str, Enum):
    """Decision taken for an item."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


class RunOutcome(str, Enum):
    """Terminal state of a run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ActionRecord:
    """A decided mutation (or skip).

    ``target`` is None when the target item does not exist yet: a file
    about to be created, or a source item skipped by the policy. For a
    created directory it is the new directory.
    """

    kind: ActionKind
    source: Optional[Item]
    target: Optional[Item]
    method: EqualityMethod = EqualityMethod.NONE


@dataclass
class ErrorRecord:
    """A failed operation.

    Set ``cancel`` to stop retrying and cancel the run. When ``exhausted``
    is True no retry is left; set ``ignore`` to skip the failing item and
    keep walking instead of failing the run.
    """

    error: BaseException
    attempt: int
    exhausted: bool = False
    cancel: bool = False
    ignore: bool = False


@dataclass
class ProgressRecord:
    """In-flight copy progress. ``target`` is None while creating a file."""

    position: int
    length: int
    source: Item
    target: Optional[Item]

    @property
    def percent(self) -> float:
        if not self.length:
            return 100.0
        return self.position * 100.0 / self.length


@dataclass
class RunResult:
    """Outcome and statistics of a run."""

    outcome: RunOutcome
    statistics: RunStatistics
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.outcome == RunOutcome.COMPLETED
