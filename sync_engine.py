"""
DJ Controller Link - Sync Engine Module
Keeps the peripheral's view of (current track, total tracks, playing) in
step with the desktop by sending one-byte nudges.

The engine holds a shadow copy of what the peripheral was last told. A
request for a new target state is turned into the shortest run of
counter bumps that moves the shadow onto the target; every byte written
moves the shadow by exactly one step. Inbound peripheral commands are
decoded and handed to registered intent handlers.
"""

import inspect
import queue
import threading
import time
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from config import (
    COUNTER_BUMP_DELAY, SHORTCUT_SETTLE_DELAY, PERIPHERAL_BOOT_DELAY,
)
from protocol import Command, EventKind, decode_stream, encode_command, play_state_command
from serial_transport import (
    ConnectionState, PortUnavailableError, SerialTransport, WriteFailure,
)
from utils import console_log


# ================= STATE TYPES =================

class Direction(Enum):
    NEXT = "next"
    PREV = "prev"


@dataclass(frozen=True)
class PlaybackState:
    """Desired peripheral state. An empty playlist maps to the wire origin."""

    current_track: int = 1
    total_tracks: int = 1
    is_playing: bool = False
    is_empty: bool = False

    def __post_init__(self):
        if self.total_tracks < 1:
            raise ValueError(f"total_tracks must be >= 1, got {self.total_tracks}")
        if not 1 <= self.current_track <= self.total_tracks:
            raise ValueError(
                f"current_track {self.current_track} outside 1..{self.total_tracks}"
            )
        if self.is_empty and self.as_tuple() != (1, 1, False):
            raise ValueError("the empty state is always (1, 1, stopped) on the wire")

    @classmethod
    def origin(cls):
        return cls(1, 1, False)

    @classmethod
    def empty(cls):
        return cls(1, 1, False, is_empty=True)

    @classmethod
    def from_playlist(cls, index, count, playing):
        """Build from a 0-based playlist index and track count."""
        if count <= 0:
            return cls.empty()
        return cls(index + 1, count, bool(playing))

    def as_tuple(self):
        return (self.current_track, self.total_tracks, self.is_playing)


class ShadowState(NamedTuple):
    current_track: int
    total_tracks: int
    is_playing: bool


def step_forward(current, total):
    current += 1
    return 1 if current > total else current


def step_backward(current, total):
    current -= 1
    return total if current < 1 else current


# ================= INTENT WORKER =================

class IntentWorker(threading.Thread):
    """Single long-lived thread that runs queued intent handlers in order."""

    def __init__(self, log_func=None):
        super().__init__(name="IntentWorker", daemon=True)
        self.log = log_func or console_log
        self._queue = queue.Queue()

    def submit(self, func, *args):
        self._queue.put((func, args))

    def run(self):
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                func, args = item
                try:
                    func(*args)
                except Exception as e:
                    self.log(f"Intent handler failed: {e}", "error")
            finally:
                self._queue.task_done()

    def join_pending(self):
        """Block until everything queued so far has run."""
        self._queue.join()

    def stop(self, timeout=1.0):
        self._queue.put(None)
        if self is not threading.current_thread():
            self.join(timeout)


def _resolve(target):
    return target() if callable(target) else target


def _hold(handler):
    """Weak reference for bound methods, strong for plain callables."""
    if handler is None:
        return None
    if inspect.ismethod(handler):
        return weakref.WeakMethod(handler)
    return lambda: handler


# ================= SYNC ENGINE =================

class SyncEngine:
    HANDLER_METHODS = {
        EventKind.PLAY: "on_play",
        EventKind.PAUSE: "on_pause",
        EventKind.NEXT_TRACK: "on_next",
        EventKind.PREV_TRACK: "on_prev",
        EventKind.SEEK_RELATIVE: "on_seek_relative",
        EventKind.STATUS_REQUEST: "on_status_request",
    }
    DETACHED_EVENTS = frozenset((EventKind.NEXT_TRACK, EventKind.PREV_TRACK))

    def __init__(self, transport=None, log_func=None, sleep=None, clock=None):
        self.log = log_func or console_log
        self._sleep = sleep or time.sleep
        self._clock = clock or time.monotonic
        self.transport = transport or SerialTransport(
            log_func=self.log, sleep=self._sleep, clock=self._clock
        )
        self.transport.set_status_callback(self._emit_status)
        self.transport.on_bytes_available(self._on_bytes)

        self._lock = threading.Lock()
        self._current = 1
        self._total = 1
        self._playing = False
        self._ready_at = None

        self._handlers = {}
        self._status_callback = None

        self._worker = IntentWorker(self.log)
        self._worker.start()

    # ---------- observation ----------

    @property
    def shadow_state(self):
        with self._lock:
            return ShadowState(self._current, self._total, self._playing)

    @property
    def is_connected(self):
        return self.transport.is_open

    @property
    def connection_state(self):
        return self.transport.state

    def set_status_callback(self, callback):
        self._status_callback = callback

    def _emit_status(self, message):
        if self._status_callback:
            self._status_callback(message)

    # ---------- connection ----------

    def list_ports(self):
        return self.transport.list_ports()

    def connect(self, port_name):
        try:
            self.transport.open(port_name)
        except PortUnavailableError as e:
            self._emit_status(str(e))
            return False
        self.on_connected()
        return True

    def disconnect(self):
        self.transport.close()

    def on_connected(self):
        """Both ends restart from (1, 1, stopped); hold writes for the boot delay."""
        with self._lock:
            self._reset_shadow_locked()
            opened_at = self.transport.opened_at
            base = opened_at if opened_at is not None else self._clock()
            self._ready_at = base + PERIPHERAL_BOOT_DELAY
        self.log("Shadow reset after connect", "debug")

    def reset_shadow(self):
        with self._lock:
            self._reset_shadow_locked()
        self.log("Reset track counters to defaults", "debug")

    def _reset_shadow_locked(self):
        self._current = 1
        self._total = 1
        self._playing = False

    def shutdown(self):
        self.disconnect()
        self._worker.stop()

    # ---------- outbound ----------

    def request_target_state(self, target):
        """Drive the shadow onto ``target``. True when they match afterwards.

        ``target`` may be a zero-argument callable returning the state; it is
        evaluated under the engine lock so the newest state is the one sent.
        An empty state restarts the shadow from the origin without bytes.
        """
        with self._lock:
            if not self.transport.is_open:
                return False
            target = _resolve(target)
            self.log(
                f"Updating peripheral: {target.current_track}/{target.total_tracks} "
                f"{'playing' if target.is_playing else 'paused'} "
                f"(was: {self._current}/{self._total} "
                f"{'playing' if self._playing else 'paused'})",
                "debug",
            )
            self._reconcile_locked(target)
            return self._shadow_tuple() == target.as_tuple()

    def request_track_change(self, direction, playing_after, expected=None, fallback=None):
        """Single N/B step with wrap, then settle the play state.

        ``expected`` is the (current, total) the caller stepped from. If the
        shadow has moved away from it, no shortcut is sent: the shadow is
        reconciled onto ``fallback`` (a state or a callable returning one),
        or onto the step's destination when no fallback is given.
        """
        with self._lock:
            if not self.transport.is_open:
                return False
            if expected is not None and (self._current, self._total) != tuple(expected):
                if fallback is not None:
                    target = _resolve(fallback)
                else:
                    current, total = expected
                    if direction is Direction.NEXT:
                        current = step_forward(current, total)
                    else:
                        current = step_backward(current, total)
                    target = PlaybackState(current, total, bool(playing_after))
                self.log("Shadow moved before track change; reconciling", "debug")
                self._reconcile_locked(target)
                return self._shadow_tuple() == target.as_tuple()
            if direction is Direction.NEXT:
                if not self._send(Command.NEXT):
                    return False
                self._current = step_forward(self._current, self._total)
            else:
                if not self._send(Command.PREV):
                    return False
                self._current = step_backward(self._current, self._total)
            if not self._pause(SHORTCUT_SETTLE_DELAY):
                return False
            ok = self._align_play_state(bool(playing_after))
            self.log(
                f"Sent track change: {direction.value} with play state: {playing_after}",
                "debug",
            )
            return ok

    def emit_beat(self):
        if not self.transport.is_open or self._boot_pending():
            return False
        # Skip the pulse while a reconcile holds the line.
        if not self._lock.acquire(blocking=False):
            return False
        try:
            return self._send(Command.BEAT, quiet=True)
        finally:
            self._lock.release()

    def request_status(self):
        """Ask the peripheral to report; no shadow effect."""
        with self._lock:
            if not self.transport.is_open:
                return False
            return self._send(Command.STATUS_REQUEST)

    def _reconcile_locked(self, target):
        if target.is_empty:
            self._reset_shadow_locked()
            return True

        want_current, want_total, want_playing = target.as_tuple()

        while self._total < want_total:
            if not self._send(Command.TOTAL_UP):
                return False
            self._total += 1
            if not self._pause(COUNTER_BUMP_DELAY):
                return False

        while self._total > want_total:
            if not self._send(Command.TOTAL_DOWN):
                return False
            self._total -= 1
            if not self._pause(COUNTER_BUMP_DELAY):
                return False

        while self._current < want_current:
            if not self._send(Command.CURSOR_UP):
                return False
            self._current = step_forward(self._current, self._total)
            if not self._pause(COUNTER_BUMP_DELAY):
                return False

        while self._current > want_current:
            if not self._send(Command.CURSOR_DOWN):
                return False
            self._current = step_backward(self._current, self._total)
            if not self._pause(COUNTER_BUMP_DELAY):
                return False

        return self._align_play_state(want_playing)

    def _align_play_state(self, want_playing):
        if self._playing == want_playing:
            return True
        if not self._send(play_state_command(want_playing)):
            return False
        self._playing = want_playing
        return True

    def _send(self, command, quiet=False):
        self._await_peripheral_ready()
        try:
            self.transport.write(encode_command(command))
        except WriteFailure as e:
            self.log(f"Failed to send '{command.value.decode()}': {e}", "error")
            return False
        if not quiet:
            self.log(f"Sent command: '{command.value.decode()}'", "debug")
        return True

    def _pause(self, seconds):
        """Sleep between bytes. False when the link went away meanwhile."""
        self._sleep(seconds)
        return self.transport.state is ConnectionState.OPEN

    def _boot_pending(self):
        return self._ready_at is not None and self._clock() < self._ready_at

    def _await_peripheral_ready(self):
        if self._ready_at is None:
            return
        remaining = self._ready_at - self._clock()
        self._ready_at = None
        if remaining > 0:
            self.log(f"Waiting {remaining:.1f}s for peripheral boot", "debug")
            self._sleep(remaining)

    def _shadow_tuple(self):
        return (self._current, self._total, self._playing)

    # ---------- inbound ----------

    def set_play_handler(self, handler):
        self._set_handler(EventKind.PLAY, handler)

    def set_pause_handler(self, handler):
        self._set_handler(EventKind.PAUSE, handler)

    def set_next_handler(self, handler):
        self._set_handler(EventKind.NEXT_TRACK, handler)

    def set_prev_handler(self, handler):
        self._set_handler(EventKind.PREV_TRACK, handler)

    def set_seek_relative_handler(self, handler):
        self._set_handler(EventKind.SEEK_RELATIVE, handler)

    def set_status_request_handler(self, handler):
        self._set_handler(EventKind.STATUS_REQUEST, handler)

    def bind_intent_handler(self, target):
        """Register every ``on_*`` intent method ``target`` provides."""
        for kind, name in self.HANDLER_METHODS.items():
            method = getattr(target, name, None)
            if callable(method):
                self._set_handler(kind, method)

    def _set_handler(self, kind, handler):
        ref = _hold(handler)
        if ref is None:
            self._handlers.pop(kind, None)
        else:
            self._handlers[kind] = ref

    def post_intent(self, func, *args):
        """Run ``func`` on the intent worker, after anything already queued."""
        self._worker.submit(func, *args)

    def wait_for_intents(self):
        self._worker.join_pending()

    def _on_bytes(self, data):
        for event in decode_stream(data):
            self.log(f"Received command: {event}", "debug")
            if event.is_unknown:
                self.log(f"Unknown command from peripheral: {event}", "warning")
                continue
            ref = self._handlers.get(event.kind)
            handler = ref() if ref is not None else None
            if handler is None:
                continue
            if event.kind in self.DETACHED_EVENTS:
                self._worker.submit(handler)
                continue
            try:
                if event.kind is EventKind.SEEK_RELATIVE:
                    handler(event.seconds)
                else:
                    handler()
            except Exception as e:
                self.log(f"Handler for {event} failed: {e}", "error")
