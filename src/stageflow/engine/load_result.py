"""Result of reading a pipeline definition.

Loading reports problems as values rather than exceptions so the CLI can
print every kind of definition error the same way. Running a pipeline never
produces a ``LoadResult``; its result is a ``RunOutcome``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class LoadStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class LoadResult(Generic[T]):  # noqa: UP046
    """Either a loaded value or an error message, never both.

    ``metadata`` carries where the value came from (``{"source": ...}``).
    Truthiness follows success, so ``if not result:`` reads naturally.
    """

    status: LoadStatus
    value: T | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.status is LoadStatus.SUCCESS:
            if self.value is None:
                raise ValueError("A successful LoadResult needs a value")
        elif not self.error:
            raise ValueError("A failed LoadResult needs an error message")

    @classmethod
    def success(cls, value: T, metadata: dict[str, Any] | None = None) -> "LoadResult[T]":
        return cls(LoadStatus.SUCCESS, value=value, metadata=dict(metadata or {}))

    @classmethod
    def failure(cls, error: str, metadata: dict[str, Any] | None = None) -> "LoadResult[T]":
        return cls(LoadStatus.FAILED, error=error, metadata=dict(metadata or {}))

    @property
    def is_success(self) -> bool:
        return self.status is LoadStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return not self.is_success

    def __bool__(self) -> bool:
        return self.is_success

    def unwrap(self) -> T:
        """The loaded value; raises ValueError carrying the error otherwise."""
        if self.value is None or not self.is_success:
            raise ValueError(f"Pipeline definition did not load: {self.error}")
        return self.value
