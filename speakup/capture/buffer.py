"""Utterance buffer: accumulates fragments for one in-progress utterance."""

import time
from typing import Callable, Optional

from speakup.capture.events import join_text


class UtteranceBuffer:
    """
    Finalized text only grows until the buffer is drained; interim text is
    replaced wholesale on every update.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._finalized = ""
        self._interim = ""
        self.updated_at: Optional[float] = None

    @property
    def finalized(self) -> str:
        return self._finalized

    @property
    def interim(self) -> str:
        return self._interim

    @property
    def text(self) -> str:
        """Finalized plus interim text, trimmed."""
        return join_text([self._finalized, self._interim])

    @property
    def is_empty(self) -> bool:
        return not self.text

    def append_final(self, text: str) -> None:
        if text and text.strip():
            self._finalized = join_text([self._finalized, text])
        self._touch()

    def set_interim(self, text: str) -> None:
        self._interim = (text or "").strip()
        self._touch()

    def drain(self) -> str:
        """Return the full utterance text and clear both parts."""
        text = self.text
        self.clear()
        return text

    def clear(self) -> None:
        self._finalized = ""
        self._interim = ""
        self.updated_at = None

    def _touch(self) -> None:
        self.updated_at = self._clock()

    def __repr__(self) -> str:
        return f"UtteranceBuffer(finalized={self._finalized!r}, interim={self._interim!r})"
