"""
Playback controller for compiled action sequences.

The controller replays an ``ActionSequence`` one action at a time,
folding each action into its ``SimulationState``. Playback is
forward-only: once every action has been applied the controller is
FINISHED and a new sequence must be loaded to replay.

Automatic playback runs as a single cancellable asyncio task that sleeps
``base_delay_ms / speed`` between actions, yielding to the event loop so
observers can render each state before the next one is applied.
"""

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Callable

from .actions import Action, ActionSequence
from .state import SimulationState, advance_cursor, apply_action

logger = logging.getLogger(__name__)

# Delay between automatic steps at 1x speed
BASE_DELAY_MS = 900

SPEEDS = (0.5, 1.0, 2.0)

StepListener = Callable[[SimulationState, list[str]], None]


class PlaybackStatus(Enum):
    """Lifecycle of a playback controller."""

    IDLE = "idle"  # No sequence loaded
    READY = "ready"  # Sequence loaded, not playing
    PLAYING = "playing"  # Automatic stepping armed
    PAUSED = "paused"  # Automatic stepping stopped before the end
    FINISHED = "finished"  # Every action applied


class PlaybackController:
    """Replays an action sequence into a simulation state.

    The controller is the only writer of its ``state``; observers read it
    directly or subscribe to receive it after every applied action.

    Attributes:
        state: Current simulation state.
        sequence: Loaded action sequence (empty when IDLE).
        status: Current playback status.
        speed: Playback speed multiplier, one of ``SPEEDS``.
        base_delay_ms: Delay between automatic steps at 1x speed.
    """

    def __init__(self, speed: float = 1.0, base_delay_ms: float = BASE_DELAY_MS):
        if speed not in SPEEDS:
            raise ValueError(f"Speed must be one of {SPEEDS}, got {speed}")
        self.state = SimulationState()
        self.sequence: ActionSequence = ()
        self.status = PlaybackStatus.IDLE
        self.speed = speed
        self.base_delay_ms = base_delay_ms

        self._task: asyncio.Task | None = None
        self._listeners: list[StepListener] = []

    # -- internal helpers ------------------------------------------------

    def _cancel_pending(self) -> None:
        """Cancel the armed autoplay task, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _arm(self) -> bool:
        """Arm the autoplay task.

        Returns:
            False if there is no running event loop to schedule it on.
        """
        self._cancel_pending()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Automatic playback needs a running event loop")
            return False
        self._task = loop.create_task(self._autoplay(), name="dsviz-playback")
        self._task.add_done_callback(self._on_task_done)
        return True

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.error("Automatic playback stopped by an error", exc_info=task.exception())
        if task is self._task and self.status is PlaybackStatus.PLAYING:
            self.status = PlaybackStatus.PAUSED

    def _advance(self) -> list[str]:
        """Apply the action at the cursor and move the cursor past it."""
        action = self.sequence[self.state.cursor]
        new_state, lines = apply_action(self.state, action)
        self.state = replace(
            new_state, cursor=advance_cursor(self.sequence, new_state.cursor)
        )

        if self.state.cursor >= len(self.sequence):
            self.status = PlaybackStatus.FINISHED
            logger.debug("Playback finished after %d actions", len(self.sequence))

        for listener in self._listeners:
            listener(self.state, lines)
        return lines

    async def _autoplay(self) -> None:
        while self.status is PlaybackStatus.PLAYING and not self.is_finished:
            await asyncio.sleep(self.delay_seconds)
            if self.status is not PlaybackStatus.PLAYING:
                break
            self._advance()

    # -- public API ------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self.status is not PlaybackStatus.IDLE

    @property
    def is_finished(self) -> bool:
        return self.state.cursor >= len(self.sequence)

    @property
    def remaining(self) -> int:
        return len(self.sequence) - self.state.cursor

    @property
    def delay_seconds(self) -> float:
        """Delay between automatic steps at the current speed."""
        return self.base_delay_ms / self.speed / 1000.0

    @property
    def has_pending_step(self) -> bool:
        """True while an autoplay task is armed."""
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: StepListener) -> None:
        """Call ``listener(state, trace_lines)`` after every applied action."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: StepListener) -> None:
        self._listeners.remove(listener)

    def load(self, sequence: ActionSequence) -> bool:
        """Load a freshly compiled sequence, discarding the current one.

        Highlights, message and cursor are cleared; leader, offsets and
        RTTs carry over. Loading an empty sequence leaves the controller
        IDLE.

        Args:
            sequence: Sequence to replay.

        Returns:
            True if the controller is now READY.
        """
        self._cancel_pending()
        self.sequence = tuple(sequence)
        self.state = self.state.cleared()

        if not self.sequence:
            logger.warning("Refusing to load an empty action sequence")
            self.status = PlaybackStatus.IDLE
            return False

        self.status = PlaybackStatus.READY
        logger.info("Loaded action sequence of %d actions", len(self.sequence))
        return True

    def reset(self, initial_state: SimulationState | None = None) -> None:
        """Discard the sequence and all state, returning to IDLE.

        Args:
            initial_state: State to start from instead of an empty one.
        """
        self._cancel_pending()
        self.sequence = ()
        self.state = initial_state or SimulationState()
        self.status = PlaybackStatus.IDLE

    def apply_immediate(self, action: Action) -> list[str]:
        """Fold an out-of-sequence action, such as a leader crash.

        The cursor, sequence and status are untouched.

        Returns:
            The trace lines of the action.
        """
        cursor = self.state.cursor
        new_state, lines = apply_action(self.state, action)
        self.state = replace(new_state, cursor=cursor)
        for listener in self._listeners:
            listener(self.state, lines)
        return lines

    def play(self) -> bool:
        """Start automatic playback from the cursor.

        A no-op (logged) when nothing is loaded, playback already
        finished or no event loop is running.

        Returns:
            True if playback is now running.
        """
        if self.status is PlaybackStatus.IDLE:
            logger.warning("Play requested with no action sequence loaded")
            return False
        if self.status is PlaybackStatus.FINISHED:
            logger.warning("Play requested after playback finished; load a new sequence")
            return False
        if self.status is PlaybackStatus.PLAYING:
            return True

        if not self._arm():
            return False
        self.status = PlaybackStatus.PLAYING
        return True

    def pause(self) -> None:
        """Stop automatic playback, keeping the cursor where it is."""
        if self.status is not PlaybackStatus.PLAYING:
            return
        self._cancel_pending()
        self.status = PlaybackStatus.PAUSED

    def step(self) -> list[str] | None:
        """Apply exactly one action.

        While playing, the pending automatic step is cancelled and
        re-armed after this one so that no action is applied twice.

        Returns:
            The trace lines of the applied action, or None if there was
            nothing to apply.
        """
        if self.status is PlaybackStatus.IDLE:
            logger.warning("Step requested with no action sequence loaded")
            return None
        if self.is_finished:
            logger.warning("Step requested after playback finished")
            return None

        playing = self.status is PlaybackStatus.PLAYING
        if playing:
            self._cancel_pending()

        lines = self._advance()

        if playing and self.status is PlaybackStatus.PLAYING and not self._arm():
            self.status = PlaybackStatus.PAUSED
        return lines

    def run_to_completion(self) -> list[str]:
        """Apply every remaining action synchronously.

        Returns:
            The trace lines of all applied actions, in order.
        """
        self._cancel_pending()
        lines: list[str] = []
        while self.is_loaded and not self.is_finished:
            lines.extend(self._advance())
        return lines

    def set_speed(self, speed: float) -> bool:
        """Change the playback speed; takes effect from the next delay."""
        if speed not in SPEEDS:
            logger.warning("Rejected playback speed %s; expected one of %s", speed, SPEEDS)
            return False
        self.speed = speed
        return True

    async def wait(self) -> None:
        """Wait until automatic playback stops (finished or paused)."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    def __repr__(self) -> str:
        return (
            f"PlaybackController({self.status.value}, "
            f"{self.state.cursor}/{len(self.sequence)}, speed={self.speed}x)"
        )
