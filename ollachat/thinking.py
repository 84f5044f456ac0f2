"""Reasoning ("thinking") text collected during one streaming reply."""

import time

REASONING_PREVIEW_WIDTH = 60


class ReasoningState:
    """Tracks the reasoning stream of a single completion call.

    Reasoning fragments accumulate until the first answer fragment
    arrives; after finalize() further reasoning is ignored.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._parts: list[str] = []
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.finalized = False

    @property
    def active(self) -> bool:
        return self.started_at is not None and not self.finalized

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def add(self, fragment: str) -> bool:
        """Record a reasoning fragment. Returns False once finalized."""
        if self.finalized or not fragment:
            return False
        if self.started_at is None:
            self.started_at = self._clock()
        self._parts.append(fragment)
        return True

    def finalize(self) -> bool:
        """Stop accepting reasoning. Returns True only if there was any."""
        if self.finalized:
            return False
        self.finalized = True
        if self.started_at is None:
            return False
        self.finished_at = self._clock()
        return True

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else self._clock()
        return end - self.started_at

    def preview(self, width: int = REASONING_PREVIEW_WIDTH) -> str:
        """Single-line tail of the reasoning text, at most `width` characters."""
        flat = " ".join(self.text.split())
        if len(flat) <= width:
            return flat
        return "…" + flat[-(width - 1) :]
