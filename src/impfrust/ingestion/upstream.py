"""Upstream contract: one `fetch()` per scheduler tick, returning a tagged outcome."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Sequence, Union

from impfrust.domain.models import AvailabilityRecord


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    MALFORMED_RESPONSE = "malformed_response"


@dataclass(frozen=True)
class FetchSuccess:
    """Raw records exactly as the upstream reported them (unfiltered, upstream order)."""

    records: tuple[AvailabilityRecord, ...]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class FetchFailure:
    kind: FailureKind
    message: str = ""
    retry_after_seconds: float | None = None

    @property
    def ok(self) -> bool:
        return False


FetchOutcome = Union[FetchSuccess, FetchFailure]


class UpstreamClient(Protocol):
    """Anything that can produce the current raw listing of availability records.

    Implementations apply their own timeout and must not retry internally;
    retry policy belongs to the scheduler.
    """

    def fetch(self) -> FetchOutcome:
        ...


@dataclass
class CallableUpstreamClient:
    """Adapt a plain callable returning records into an `UpstreamClient`.

    Exceptions raised by the callable are mapped onto failure kinds:
    `TimeoutError` -> TIMEOUT, `ValueError` -> MALFORMED_RESPONSE, `OSError` -> UNREACHABLE.
    """

    source: Callable[[], Sequence[AvailabilityRecord]]

    def fetch(self) -> FetchOutcome:
        try:
            return FetchSuccess(records=tuple(self.source()))
        except TimeoutError as exc:
            return FetchFailure(FailureKind.TIMEOUT, str(exc))
        except ValueError as exc:
            return FetchFailure(FailureKind.MALFORMED_RESPONSE, str(exc))
        except OSError as exc:
            return FetchFailure(FailureKind.UNREACHABLE, str(exc))
