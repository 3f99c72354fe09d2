from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from panelvoice.core.errors import EventChannel, EventKind, InvalidTransition
from panelvoice.models.entities import DialogueUnit, Timeline, UnitStatus, VoiceConfig
from panelvoice.models.schemas import PlaybackSnapshot
from panelvoice.services.tts import SpeechCallbacks, SpeechHandle, SpeechSynthesizer
from panelvoice.services.voices import voice_resolver

logger = logging.getLogger(__name__)


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


class PlaybackEvent(str, Enum):
    START = "start"
    UNIT_COMPLETED = "unit_completed"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


@dataclass
class PlaybackState:
    status: PlaybackStatus = PlaybackStatus.IDLE
    current_index: int = 0
    generation: int = 0


@dataclass(frozen=True)
class _Queued:
    event: PlaybackEvent
    payload: dict[str, Any] = field(default_factory=dict)


class HighlightSink(Protocol):
    def activate(self, unit: DialogueUnit) -> None: ...

    def highlight_word(self, unit: DialogueUnit, word_index: int) -> None: ...

    def clear(self) -> None: ...


class LoggingHighlighter:
    def activate(self, unit: DialogueUnit) -> None:
        logger.info("🎯 Highlight unit %d (%s): %s", unit.sequence_index, unit.speaker, unit.text[:60])

    def highlight_word(self, unit: DialogueUnit, word_index: int) -> None:
        logger.debug("unit %d word %d", unit.sequence_index, word_index)

    def clear(self) -> None:
        logger.info("🎯 Highlight cleared")


_ANY = None

# (status, event) -> handler name. A (None, event) row applies in every status.
TRANSITIONS: dict[tuple[PlaybackStatus | None, PlaybackEvent], str] = {
    (PlaybackStatus.IDLE, PlaybackEvent.START): "_on_start",
    (PlaybackStatus.FINISHED, PlaybackEvent.START): "_on_start",
    (PlaybackStatus.PLAYING, PlaybackEvent.UNIT_COMPLETED): "_on_unit_completed",
    (PlaybackStatus.PAUSED, PlaybackEvent.UNIT_COMPLETED): "_on_completed_while_paused",
    (PlaybackStatus.PLAYING, PlaybackEvent.PAUSE): "_on_pause",
    (PlaybackStatus.PAUSED, PlaybackEvent.RESUME): "_on_resume",
    (_ANY, PlaybackEvent.STOP): "_on_stop",
}


class PlaybackOrchestrator:
    """Plays a timeline one unit at a time and keeps the highlight in step.

    All inputs (public calls and synthesizer callbacks) are queued and handled
    one at a time through ``TRANSITIONS``, so a synthesizer that finishes
    inside ``speak`` cannot re-enter a handler. Each synthesis request is tagged
    with ``(generation, index)``; completions carrying another tag are stale
    and dropped. ``stop`` and every ``start`` bump the generation.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        highlighter: HighlightSink | None = None,
        events: EventChannel | None = None,
        on_finished: Callable[[], None] | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.highlighter = highlighter or LoggingHighlighter()
        self.events = events or EventChannel()
        self.on_finished = on_finished
        self.state = PlaybackState()
        self._timeline = Timeline()
        self._handle: SpeechHandle | None = None
        self._held: dict[str, Any] | None = None
        self._highlight_active = False
        self._queue: deque[_Queued] = deque()
        self._dispatching = False

    @property
    def status(self) -> PlaybackStatus:
        return self.state.status

    @property
    def timeline(self) -> Timeline:
        return self._timeline

    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(status=self.state.status.value, current_index=self.state.current_index)

    def start(self, timeline: Timeline) -> None:
        if self.state.status not in (PlaybackStatus.IDLE, PlaybackStatus.FINISHED):
            raise InvalidTransition(f"cannot start while {self.state.status.value}")
        self._post(PlaybackEvent.START, timeline=timeline)

    def pause(self) -> None:
        self._post(PlaybackEvent.PAUSE)

    def resume(self) -> None:
        self._post(PlaybackEvent.RESUME)

    def stop(self) -> None:
        self._post(PlaybackEvent.STOP)

    def _post(self, event: PlaybackEvent, **payload: Any) -> None:
        self._queue.append(_Queued(event, payload))
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                self._dispatch(self._queue.popleft())
        finally:
            self._dispatching = False

    def _dispatch(self, item: _Queued) -> None:
        handler_name = TRANSITIONS.get((self.state.status, item.event)) or TRANSITIONS.get((_ANY, item.event))
        if handler_name is None:
            logger.debug("ignored %s while %s", item.event.value, self.state.status.value)
            return
        getattr(self, handler_name)(**item.payload)

    def _on_start(self, timeline: Timeline) -> None:
        self.state.generation += 1
        self._timeline = timeline.fresh_copy()
        self._held = None
        self.state.current_index = 0
        self.state.status = PlaybackStatus.PLAYING
        logger.info("▶️ Playback started: %d unit(s)", len(self._timeline))
        if not self._timeline:
            self._finish()
            return
        self._request(0)

    def _on_unit_completed(self, generation: int, index: int, error: BaseException | None) -> None:
        if self._is_stale(generation, index):
            return
        unit = self._timeline[index]
        self._handle = None
        if error is None:
            unit.advance(UnitStatus.DONE)
        else:
            unit.advance(UnitStatus.FAILED)
            self.events.emit(
                EventKind.SYNTHESIS_FAILURE,
                sequence_index=index,
                speaker=unit.speaker,
                error=str(error),
            )

        self.state.current_index = index + 1
        if self.state.current_index >= len(self._timeline):
            self._finish()
        else:
            self._request(self.state.current_index)

    def _on_completed_while_paused(self, generation: int, index: int, error: BaseException | None) -> None:
        if self._is_stale(generation, index):
            return
        # applied on resume so a paused session never advances
        self._held = {"generation": generation, "index": index, "error": error}

    def _on_pause(self) -> None:
        self.state.status = PlaybackStatus.PAUSED
        if self._handle is not None:
            self._handle.pause()
        logger.info("⏸️ Playback paused at unit %d", self.state.current_index)

    def _on_resume(self) -> None:
        self.state.status = PlaybackStatus.PLAYING
        logger.info("⏯️ Playback resumed at unit %d", self.state.current_index)
        if self._held is not None:
            held, self._held = self._held, None
            self._on_unit_completed(**held)
        elif self._handle is not None:
            self._handle.resume()

    def _on_stop(self) -> None:
        if (
            self.state.status == PlaybackStatus.IDLE
            and self.state.current_index == 0
            and self._handle is None
            and not self._highlight_active
        ):
            return
        self.state.generation += 1
        if self._handle is not None:
            handle, self._handle = self._handle, None
            handle.cancel()
        self._held = None
        self._clear_highlight()
        self.state.current_index = 0
        self.state.status = PlaybackStatus.IDLE
        logger.info("⏹️ Playback stopped")

    def _request(self, index: int) -> None:
        unit = self._timeline[index]
        unit.advance(UnitStatus.SPEAKING)
        self.highlighter.activate(unit)
        self._highlight_active = True

        generation = self.state.generation
        callbacks = SpeechCallbacks(
            on_end=lambda: self._post(PlaybackEvent.UNIT_COMPLETED, generation=generation, index=index, error=None),
            on_error=lambda exc: self._post(
                PlaybackEvent.UNIT_COMPLETED, generation=generation, index=index, error=exc
            ),
            on_word=lambda word_index: self._on_word(generation, index, word_index),
        )
        try:
            self._handle = self.synthesizer.speak(unit.text, self._voice_for(unit), callbacks)
        except Exception as exc:
            self._handle = None
            self._post(PlaybackEvent.UNIT_COMPLETED, generation=generation, index=index, error=exc)

    def _on_word(self, generation: int, index: int, word_index: int) -> None:
        if self._is_stale(generation, index, quiet=True) or self.state.status != PlaybackStatus.PLAYING:
            return
        self.highlighter.highlight_word(self._timeline[index], word_index)

    def _finish(self) -> None:
        self.state.status = PlaybackStatus.FINISHED
        self._clear_highlight()
        logger.info("✅ Playback finished")
        if self.on_finished:
            self.on_finished()

    def _clear_highlight(self) -> None:
        if self._highlight_active:
            self.highlighter.clear()
            self._highlight_active = False

    def _is_stale(self, generation: int, index: int, quiet: bool = False) -> bool:
        if generation == self.state.generation and index == self.state.current_index:
            return False
        if not quiet:
            logger.debug(
                "dropped stale completion (generation %d, unit %d); current generation %d, unit %d",
                generation,
                index,
                self.state.generation,
                self.state.current_index,
            )
        return True

    @staticmethod
    def _voice_for(unit: DialogueUnit) -> VoiceConfig:
        return unit.voice_config or voice_resolver.resolve(unit.speaker)
