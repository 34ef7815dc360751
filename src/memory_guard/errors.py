from __future__ import annotations

from typing import Optional, Sequence


class MemoryGuardError(Exception):
    """Base class for every error raised by memory_guard."""


class ConfigurationError(MemoryGuardError):
    """Invalid setup: duplicate backend id, inverted thresholds, unknown keys."""


class BackendError(MemoryGuardError):
    def __init__(
        self,
        backend_id: str,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.backend_id = backend_id
        self.operation = operation
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "failed"
        super().__init__(f"backend '{backend_id}' {operation} failed ({detail})")


class AckTimeoutError(MemoryGuardError):
    """Bounded acknowledgement wait expired.

    Reported on an AckReport, never raised by the guard itself: compaction
    proceeds with partial acknowledgements.
    """

    def __init__(self, backend_ids: Sequence[str], timeout_ms: float) -> None:
        self.backend_ids = tuple(backend_ids)
        self.timeout_ms = float(timeout_ms)
        super().__init__(
            f"no acknowledgement within {self.timeout_ms:g}ms from: "
            + ", ".join(self.backend_ids)
        )


class CompactionError(MemoryGuardError):
    def __init__(
        self,
        session_key: str,
        stage: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.session_key = session_key
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"compaction of '{session_key}' failed at {stage}{detail}")


class HandlerError(MemoryGuardError):
    """Strict emit: at least one handler failed. Carries the EmitReport."""

    def __init__(self, report) -> None:
        self.report = report
        ids = ", ".join(f.subscription_id for f in report.failures)
        super().__init__(
            f"{len(report.failures)} handler(s) failed for "
            f"{report.event.type.value} (subscriptions: {ids})"
        )
