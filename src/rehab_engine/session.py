"""Session orchestration: runs a task sequence against live engine state.

The orchestrator never blocks. Each "wait for a gesture" or "hold for N
seconds" step is a sub-phase of the active task that the next ``tick``
re-checks:

    waiting  -> the task's condition has not started yet
    holding  -> the condition is in progress (timer or open repetition)
    resting  -> pause between repetitions

Dropping the condition while holding returns to ``waiting`` with the timer
cleared. Holds are strictly continuous.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from rehab_engine.errors import ConfigurationError, SessionSaveError
from rehab_engine.hands import FingerChannel, HandSide
from rehab_engine.pinch import PinchDetector
from rehab_engine.postures import PostureClassifier
from rehab_engine.records import RowKind, SessionRecord, SessionRow
from rehab_engine.report import ComparisonReport, compare_sessions
from rehab_engine.tasks import RehabTask, TaskKind

logger = logging.getLogger("rehab_engine.session")

# Slack for accumulated frame times compared against hold durations
TIME_EPSILON = 1e-9


class SessionState(Enum):
    IDLE = "idle"
    TASK_ACTIVE = "task_active"
    TASK_COMPLETE = "task_complete"
    SESSION_COMPLETE = "session_complete"


class TaskPhase(Enum):
    WAITING = "waiting"
    HOLDING = "holding"
    RESTING = "resting"


class SessionEventType(Enum):
    SESSION_STARTED = "session_started"
    TASK_STARTED = "task_started"
    REP_COMPLETED = "rep_completed"
    TASK_COMPLETED = "task_completed"
    TARGET_PINCH_STARTED = "target_pinch_started"
    TARGET_PINCH_ENDED = "target_pinch_ended"
    SESSION_COMPLETED = "session_completed"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventType
    session_time: float
    task_index: int = -1
    task: Optional[RehabTask] = None
    row: Optional[SessionRow] = None
    hand: Optional[HandSide] = None
    channel: Optional[FingerChannel] = None
    report: Optional[ComparisonReport] = None


@dataclass(frozen=True)
class TaskProgress:
    """Snapshot of the active task for display."""
    task_index: int
    task: RehabTask
    phase: TaskPhase
    reps_done: int
    hold_time: float

    def describe(self) -> str:
        task = self.task
        if self.phase is TaskPhase.RESTING:
            return f"Rest. Completed {self.reps_done}/{task.required_reps}"
        if task.kind is TaskKind.REPEATED_PINCHES:
            return f"Reps: {self.reps_done}/{task.required_reps}"
        if task.kind is TaskKind.POSTURE_HOLD and self.phase is TaskPhase.WAITING:
            return f"Perform {task.target_posture.value} hold {self.reps_done + 1}/{task.required_reps}"
        return f"Hold: {self.hold_time:.1f}s / {task.hold_duration:.1f}s"


class SessionOrchestrator:
    """Drives one task sequence and collects session metrics.

    Reads smoothed strengths and latch state from a PinchDetector and labels
    from a PostureClassifier; never mutates either. ``store`` is anything
    with ``load() -> SessionRecord | None`` and ``save(record)``.

    Usage:
        orchestrator = SessionOrchestrator(tasks, detector, classifier, store)
        orchestrator.start_session()
        while orchestrator.state is SessionState.TASK_ACTIVE:
            ...  # feed detector and classifier for this frame
            events = orchestrator.tick(dt)
    """

    def __init__(
        self,
        tasks: Sequence[RehabTask],
        pinch: PinchDetector,
        postures: PostureClassifier,
        store=None,
    ):
        for task in tasks:
            if task.target_channel is not None and task.target_channel not in pinch.channels:
                raise ConfigurationError(
                    f"Task {task.label!r} targets {task.target_channel.label}, "
                    f"which the pinch detector does not track"
                )

        self.tasks = list(tasks)
        self.pinch = pinch
        self.postures = postures
        self.store = store

        self._state = SessionState.IDLE
        self._record: Optional[SessionRecord] = None
        self._completed: Optional[SessionRecord] = None
        self._previous: Optional[SessionRecord] = None
        self._report: Optional[ComparisonReport] = None
        self._started_at = datetime.now()
        self._elapsed = 0.0
        self._task_index = -1
        self._pending_save = False
        self._target_pinching = False
        self._reset_task_state()

    def _reset_task_state(self):
        self._phase = TaskPhase.WAITING
        self._reps_done = 0
        self._hold_time = 0.0
        self._rest_time = 0.0
        self._peak = 0.0
        self._rep_started = 0.0
        self._armed = False

    # -- public state ---------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.TASK_ACTIVE, SessionState.TASK_COMPLETE)

    @property
    def current_task(self) -> Optional[RehabTask]:
        if 0 <= self._task_index < len(self.tasks):
            return self.tasks[self._task_index]
        return None

    @property
    def current_record(self) -> Optional[SessionRecord]:
        """The in-progress record; None unless a session is active."""
        return self._record if self.is_active else None

    @property
    def completed_record(self) -> Optional[SessionRecord]:
        return self._completed

    @property
    def previous_record(self) -> Optional[SessionRecord]:
        return self._previous

    @property
    def report(self) -> Optional[ComparisonReport]:
        return self._report

    @property
    def session_time(self) -> float:
        return self._elapsed

    @property
    def progress(self) -> Optional[TaskProgress]:
        task = self.current_task
        if task is None or self._state is not SessionState.TASK_ACTIVE:
            return None
        return TaskProgress(self._task_index, task, self._phase, self._reps_done, self._hold_time)

    # -- transitions ----------------------------------------------------

    def start_session(self, started_at: Optional[datetime] = None) -> list[SessionEvent]:
        """Begin a new session, discarding any in-progress one."""
        self._previous = self._load_previous()
        self._started_at = started_at or datetime.now()
        self._record = SessionRecord.start(self._started_at)
        self._completed = None
        self._report = None
        self._elapsed = 0.0
        self._task_index = -1
        self._pending_save = False
        self._target_pinching = False
        self._reset_task_state()

        logger.info("Session started (%d tasks, previous session: %s)",
                    len(self.tasks),
                    self._previous.session_date if self._previous else "none")
        events = [self._event(SessionEventType.SESSION_STARTED)]

        if not self.tasks:
            self._report = ComparisonReport(first_session=False)
            self._completed = self._record
            self._state = SessionState.SESSION_COMPLETE
            events.append(self._event(SessionEventType.SESSION_COMPLETED, report=self._report))
            return events

        self._advance(events)
        return events

    def tick(self, dt: float) -> list[SessionEvent]:
        """Advance the active task by one frame of ``dt`` seconds.

        Call after the pinch detector and posture classifier have seen this
        frame. A no-op unless a task is active.

        Raises:
            SessionSaveError: the session finished but its record could not
                be saved. The state stays TASK_COMPLETE; see ``retry_save``.
        """
        if self._state is not SessionState.TASK_ACTIVE:
            return []

        dt = max(0.0, float(dt))
        self._elapsed += dt
        events: list[SessionEvent] = []
        task = self.current_task

        self._record_strengths()
        self._update_target_edges(task, events)

        if self._phase is TaskPhase.RESTING:
            self._rest_time += dt
            if self._rest_time + TIME_EPSILON >= task.rest_seconds:
                self._phase = TaskPhase.WAITING
                self._rest_time = 0.0
            return events

        if task.kind is TaskKind.HOLD_AT_TARGET:
            self._tick_hold_at_target(task, dt, events)
        elif task.kind is TaskKind.REPEATED_PINCHES:
            self._tick_repeated_pinches(task, events)
        elif task.kind is TaskKind.POSTURE_HOLD:
            self._tick_posture_hold(task, dt, events)

        return events

    def retry_save(self) -> list[SessionEvent]:
        """Retry persisting a finished session after a failed save."""
        if not self._pending_save:
            return []
        events: list[SessionEvent] = []
        self._finish_save(events)
        return events

    # -- task logic -----------------------------------------------------

    def _hands(self, task: RehabTask) -> tuple[HandSide, ...]:
        return (task.hand,) if task.hand is not None else tuple(HandSide)

    def _target_strength(self, task: RehabTask) -> float:
        return max(self.pinch.strength(h, task.target_channel) for h in self._hands(task))

    def _pinching_hand(self, task: RehabTask) -> Optional[HandSide]:
        for hand in self._hands(task):
            if self.pinch.is_pinched(hand, task.target_channel):
                return hand
        return None

    def _tick_hold_at_target(self, task: RehabTask, dt: float, events: list[SessionEvent]):
        strength = self._target_strength(task)
        if strength >= task.target_strength:
            self._phase = TaskPhase.HOLDING
            self._hold_time += dt
            self._peak = max(self._peak, strength)
        else:
            self._phase = TaskPhase.WAITING
            self._hold_time = 0.0
            self._peak = 0.0
            return

        if self._hold_time + TIME_EPSILON >= task.hold_duration:
            self._complete_rep(task, events, task.target_channel, RowKind.PINCH_REP,
                               self._hold_time, self._peak)

    def _tick_repeated_pinches(self, task: RehabTask, events: list[SessionEvent]):
        pinching = self._pinching_hand(task) is not None
        strength = self._target_strength(task)

        if self._phase is TaskPhase.WAITING:
            # A pinch carried over from before the rep opened does not count
            if not pinching:
                self._armed = True
            elif self._armed:
                self._phase = TaskPhase.HOLDING
                self._rep_started = self._elapsed
                self._peak = strength
            return

        self._peak = max(self._peak, strength)
        if not pinching:
            duration = self._elapsed - self._rep_started
            self._complete_rep(task, events, task.target_channel, RowKind.PINCH_REP,
                               duration, self._peak)

    def _tick_posture_hold(self, task: RehabTask, dt: float, events: list[SessionEvent]):
        labels = self.postures.labels
        present = any(labels[h] is task.target_posture for h in self._hands(task))

        if self._phase is TaskPhase.WAITING:
            if not present:
                return
            self._phase = TaskPhase.HOLDING
            self._hold_time = 0.0
        elif not present:
            logger.debug("%s dropped after %.2fs, waiting again",
                         task.target_posture.value, self._hold_time)
            self._phase = TaskPhase.WAITING
            self._hold_time = 0.0
            return
        else:
            self._hold_time += dt

        if self._hold_time + TIME_EPSILON >= task.hold_duration:
            self._complete_rep(task, events, None, RowKind.POSTURE_HOLD, self._hold_time, 1.0)

    def _complete_rep(self, task, events, channel, kind, duration, strength):
        self._reps_done += 1
        row = SessionRow(
            timestamp=self._timestamp(),
            task_label=task.label,
            rep_index=self._reps_done,
            channel=channel,
            kind=kind,
            duration_seconds=duration,
            observed_strength=strength,
        )
        self._record.append_row(row)
        events.append(self._event(SessionEventType.REP_COMPLETED, row=row))
        logger.info("%s rep %d/%d (%.2fs)", task.label, self._reps_done,
                    task.required_reps, duration)

        self._hold_time = 0.0
        self._peak = 0.0
        self._armed = False

        if self._reps_done >= task.required_reps:
            self._advance(events)
        elif task.rest_seconds > 0:
            self._phase = TaskPhase.RESTING
            self._rest_time = 0.0
        else:
            self._phase = TaskPhase.WAITING

    # -- bookkeeping ----------------------------------------------------

    def _record_strengths(self):
        for ch in self.pinch.channels:
            value = max(self.pinch.strength(h, ch) for h in HandSide)
            self._record.observe_strength(ch, value)

    def _update_target_edges(self, task: RehabTask, events: list[SessionEvent]):
        if task.target_channel is None:
            return
        hand = self._pinching_hand(task)
        if hand is not None and not self._target_pinching:
            self._target_pinching = True
            events.append(self._event(SessionEventType.TARGET_PINCH_STARTED,
                                      hand=hand, channel=task.target_channel))
        elif hand is None and self._target_pinching:
            self._target_pinching = False
            events.append(self._event(SessionEventType.TARGET_PINCH_ENDED,
                                      channel=task.target_channel))

    def _advance(self, events: list[SessionEvent]):
        task = self.current_task
        if task is not None:
            if self._target_pinching:
                self._target_pinching = False
                events.append(self._event(SessionEventType.TARGET_PINCH_ENDED,
                                          channel=task.target_channel))
            self._state = SessionState.TASK_COMPLETE
            events.append(self._event(SessionEventType.TASK_COMPLETED))
            logger.info("Task %d complete: %s", self._task_index + 1, task.label)

        self._task_index += 1
        self._reset_task_state()

        if self._task_index >= len(self.tasks):
            self._finish(events)
            return

        self._state = SessionState.TASK_ACTIVE
        events.append(self._event(SessionEventType.TASK_STARTED))
        logger.info("Task %d/%d: %s", self._task_index + 1, len(self.tasks),
                    self.current_task.instruction)

    def _finish(self, events: list[SessionEvent]):
        previous = self._previous.max_pinch_strength if self._previous else None
        self._report = compare_sessions(self._record.max_pinch_strength, previous)
        self._state = SessionState.TASK_COMPLETE
        self._pending_save = True
        self._finish_save(events)

    def _finish_save(self, events: list[SessionEvent]):
        if self.store is not None:
            try:
                self.store.save(self._record)
            except OSError as e:
                logger.error("Could not save session record: %s", e)
                raise SessionSaveError(
                    f"Session finished but the record could not be saved: {e}",
                    report=self._report,
                    events=events,
                ) from e

        self._pending_save = False
        self._completed = self._record
        self._state = SessionState.SESSION_COMPLETE
        events.append(self._event(SessionEventType.SESSION_COMPLETED, report=self._report))
        logger.info("Session complete after %.1fs", self._elapsed)

    def _load_previous(self) -> Optional[SessionRecord]:
        if self.store is None:
            return None
        try:
            return self.store.load()
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable previous session: %s", e)
            return None

    def _timestamp(self) -> str:
        return (self._started_at + timedelta(seconds=self._elapsed)).isoformat()

    def _event(self, kind: SessionEventType, **kwargs) -> SessionEvent:
        return SessionEvent(
            kind=kind,
            session_time=self._elapsed,
            task_index=self._task_index,
            task=self.current_task,
            **kwargs,
        )
