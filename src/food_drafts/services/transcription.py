"""Live dictation merged into a draft's description."""

import logging
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from uuid import UUID

from food_drafts.services.drafts import DraftStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No recording in progress."""


@dataclass(frozen=True)
class Recording:
    """Recording session anchored at the text present when it started."""

    base: str
    insertion_index: int
    last_applied: str


MergerState = Idle | Recording


@dataclass(frozen=True)
class RecordingStarted:
    """Speech engine began capturing; cursor is the text caret position."""

    cursor_position: int = 0


@dataclass(frozen=True)
class RecordingStopped:
    """Speech engine stopped capturing."""


@dataclass(frozen=True)
class InterimTranscript:
    """Current utterance as recognized so far."""

    text: str


@dataclass(frozen=True)
class VolumeChanged:
    """Microphone level, display only."""

    level: float


SpeechEvent = RecordingStarted | RecordingStopped | InterimTranscript | VolumeChanged


def merge_transcription(base: str, insertion_index: int, interim: str) -> str:
    """Splice interim text into ``base`` at ``insertion_index``.

    A single space is added on either side only when the neighbouring text is
    non-empty and does not already end or start with whitespace.
    """
    before = base[:insertion_index]
    after = base[insertion_index:]
    prefix = " " if before and not _ends_with_break(before) else ""
    suffix = " " if after and not _starts_with_break(after) else ""
    return f"{before}{prefix}{interim}{suffix}{after}"


@dataclass
class TranscriptionMerger:
    """State machine folding streaming speech into one draft.

    States are ``Idle`` and ``Recording``; ``start`` and ``stop`` are the only
    transitions, and interim updates are ignored while idle.
    """

    draft_store: DraftStore
    draft_id: UUID
    on_volume: Callable[[float], None] | None = None
    state: MergerState = Idle()

    @property
    def is_recording(self) -> bool:
        """Return whether a recording session is active."""
        return isinstance(self.state, Recording)

    def start(self, cursor_position: int = 0) -> bool:
        """Capture the base text and insertion point for a new session.

        A second start without an intervening stop keeps the original anchor.
        """
        if isinstance(self.state, Recording):
            return False
        draft = self.draft_store.get(self.draft_id)
        if draft is None:
            return False
        base = draft.description
        index = min(max(0, cursor_position), len(base))
        self.state = Recording(base=base, insertion_index=index, last_applied=base)
        return True

    def stop(self) -> None:
        """End the session; the next start anchors on the current text."""
        self.state = Idle()

    def update(self, interim: str) -> bool:
        """Apply an interim transcript; return whether the draft was written."""
        state = self.state
        if not isinstance(state, Recording):
            return False
        text = interim.strip()
        if not text:
            return False

        merged = merge_transcription(state.base, state.insertion_index, text)
        if merged == state.last_applied:
            return False

        self.state = Recording(
            base=state.base,
            insertion_index=state.insertion_index,
            last_applied=merged,
        )
        draft = self.draft_store.get(self.draft_id)
        if draft is None or draft.description == merged:
            return False
        self.draft_store.update(self.draft_id, description=merged)
        return True

    def handle(self, event: SpeechEvent) -> None:
        """Dispatch a single speech engine event."""
        if isinstance(event, RecordingStarted):
            self.start(event.cursor_position)
        elif isinstance(event, RecordingStopped):
            self.stop()
        elif isinstance(event, InterimTranscript):
            self.update(event.text)
        elif isinstance(event, VolumeChanged) and self.on_volume is not None:
            self.on_volume(event.level)

    async def consume(self, events: AsyncIterable[SpeechEvent]) -> None:
        """Drive the merger from a speech engine event stream."""
        try:
            async for event in events:
                self.handle(event)
        finally:
            if self.is_recording:
                _logger.debug("Speech stream ended while recording %s", self.draft_id)
            self.stop()


def _ends_with_break(text: str) -> bool:
    return text[-1].isspace()


def _starts_with_break(text: str) -> bool:
    return text[0].isspace()
