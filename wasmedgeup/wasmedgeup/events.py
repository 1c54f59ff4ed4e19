"""Progress events emitted while wasmedgeup works.

Long-running steps report progress through a plain callback receiving
:class:`ProgressEvent` objects, so the core stays independent of how the
progress is rendered.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class Phase(str, Enum):
    """Phases of an installation."""

    RESOLVE = "resolve"
    DOWNLOAD = "download"
    VERIFY = "verify"
    EXTRACT = "extract"
    INSTALL = "install"


@dataclass(slots=True)
class ProgressEvent:
    """Progress update for one resource.

    Attributes:
        resource: Name of the resource being processed (e.g. an archive name).
        phase: Current phase.
        bytes_downloaded: Bytes processed so far.
        bytes_total: Total bytes, or None when the server sent no length.
        message: Optional human-readable message.
        timestamp: When the event was generated.
    """

    resource: str
    phase: Phase = Phase.DOWNLOAD
    bytes_downloaded: int = 0
    bytes_total: int | None = None
    message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def percent(self) -> float | None:
        """Progress percentage (0-100), or None if the total is unknown."""
        if not self.bytes_total:
            return None
        return min(100.0, self.bytes_downloaded * 100.0 / self.bytes_total)


ProgressCallback = Callable[[ProgressEvent], None]
