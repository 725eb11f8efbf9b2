"""Error types and the regex driven error classifier."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    PERMISSION_ERROR = 'permission_error'
    INSUFFICIENT_RESOURCE_ERROR = 'insufficient_resource_error'
    RESOURCE_NOT_FOUND_ERROR = 'resource_not_found_error'
    COLUMN_COUNT_ERROR = 'column_count_error'
    UNCLASSIFIED = 'unclassified'


@dataclass(frozen=True)
class JobError:
    kind: ErrorKind
    pattern: Pattern

    @classmethod
    def compile(cls, kind: ErrorKind, pattern: str) -> 'JobError':
        return cls(kind, re.compile(pattern))


class WarehouseError(Exception):
    """Base error raised by the load engine."""
    pass


class LoadTableError(WarehouseError):
    """A load step failed. The message is prefixed with the failing operation."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        super().__init__(f"{operation}: {cause}")
        self.__cause__ = cause


class ConnectionTimeoutError(WarehouseError):
    """Health check did not finish before the deadline."""
    pass


class ContextCancelled(WarehouseError):
    pass


class DeadlineExceeded(WarehouseError):
    pass


def wrap(operation: str, cause: BaseException) -> LoadTableError:
    return LoadTableError(operation, cause)


def iter_causes(err: Optional[BaseException]) -> Iterable[BaseException]:
    """Yield err and every exception chained beneath it."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


class ErrorClassifier:
    """
    Ordered (kind, pattern) table. The first pattern found in the message wins,
    so declaration order encodes priority.
    """

    def __init__(self, mappings: Sequence[JobError]):
        self._mappings: Tuple[JobError, ...] = tuple(mappings)

    @property
    def mappings(self) -> Tuple[JobError, ...]:
        return self._mappings

    def classify(self, message: str) -> ErrorKind:
        for mapping in self._mappings:
            if mapping.pattern.search(message or ''):
                return mapping.kind
        return ErrorKind.UNCLASSIFIED

    def classify_error(self, err: BaseException) -> ErrorKind:
        kind = self.classify(str(err))
        if kind is ErrorKind.UNCLASSIFIED:
            logger.debug(f"Unclassified error: {err}")
        return kind
