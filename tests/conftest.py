import threading
import time

import pytest
import serial

from controller import PlaybackController
from media_backend import AudioBackend, MediaLoadError
from playlist_model import PlaylistModel
from serial_transport import SerialTransport
from sync_engine import SyncEngine


class FakeSerial:
    """Stands in for serial.Serial: records writes, replays scripted reads."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.port = kwargs.get("port")
        self.is_open = True
        self.written = bytearray()
        self.fail_writes = False
        self.short_writes = False
        self.fail_reads = False
        self.on_write = None
        self._inbound = bytearray()
        self._cond = threading.Condition()

    # ---------- test side ----------

    def feed(self, data):
        with self._cond:
            self._inbound.extend(data)
            self._cond.notify_all()

    def sent(self, include_beats=False):
        data = bytes(self.written)
        if include_beats:
            return data
        return data.replace(b"b", b"")

    def clear(self):
        self.written.clear()

    # ---------- pyserial side ----------

    @property
    def in_waiting(self):
        with self._cond:
            return len(self._inbound)

    def read(self, size=1):
        with self._cond:
            if self.fail_reads:
                raise serial.SerialException("device reports readiness to read but returned no data")
            if not self._inbound:
                self._cond.wait(0.01)
            chunk = bytes(self._inbound[:size])
            del self._inbound[:size]
            return chunk

    def write(self, data):
        if self.fail_writes or not self.is_open:
            raise serial.SerialTimeoutException("Write timeout")
        if self.short_writes:
            return 0
        self.written.extend(data)
        if self.on_write is not None:
            self.on_write(bytes(data))
        return len(data)

    def flush(self):
        pass

    def close(self):
        self.is_open = False


class FakeSerialFactory:
    def __init__(self, error=None):
        self.error = error
        self.instances = []

    def __call__(self, **kwargs):
        if self.error is not None:
            raise self.error
        ser = FakeSerial(**kwargs)
        self.instances.append(ser)
        return ser

    @property
    def last(self):
        return self.instances[-1]


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now


class RecordingSleep:
    """Records requested delays and advances the fake clock by them."""

    def __init__(self, clock=None):
        self.calls = []
        self.clock = clock

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.now += seconds


class FakeBackend(AudioBackend):
    def __init__(self, durations=None, broken=()):
        self.durations = durations or {}
        self.broken = set(broken)
        self.loaded = None
        self.calls = []
        self.playing = False
        self.paused = False
        self.offset = 0.0
        self.elapsed = 0.0
        self.busy = True
        self.level = None

    def load(self, path):
        self.calls.append(("load", path.name))
        if path.name in self.broken:
            raise MediaLoadError(f"cannot decode {path.name}")
        self.loaded = path
        self.offset = 0.0
        self.elapsed = 0.0

    def read_duration(self, path):
        return self.durations.get(path.name)

    def play(self, start=0.0):
        self.calls.append(("play", start))
        self.offset = float(start)
        self.elapsed = 0.0
        self.playing = True
        self.paused = False

    def pause(self):
        self.calls.append(("pause",))
        self.paused = True

    def resume(self):
        self.calls.append(("resume",))
        self.paused = False

    def stop(self):
        self.calls.append(("stop",))
        self.playing = False
        self.paused = False

    def set_volume(self, level):
        self.level = level

    def position(self):
        return self.offset + self.elapsed

    def is_busy(self):
        return self.busy


class LogRecorder:
    def __init__(self):
        self.lines = []

    def __call__(self, message, msg_type="info"):
        self.lines.append((msg_type, message))

    def of_type(self, msg_type):
        return [m for t, m in self.lines if t == msg_type]


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def log():
    return LogRecorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def factory():
    return FakeSerialFactory()


@pytest.fixture
def transport(factory, sleep, clock, log):
    t = SerialTransport(log_func=log, serial_factory=factory, sleep=sleep, clock=clock)
    yield t
    t.close()


@pytest.fixture
def engine(transport, sleep, clock, log):
    e = SyncEngine(transport=transport, log_func=log, sleep=sleep, clock=clock)
    yield e
    e.shutdown()


@pytest.fixture
def connected_engine(engine, factory, sleep):
    """Engine on an open link with the boot gate already spent."""
    assert engine.connect("/dev/ttyFAKE0")
    engine._ready_at = None
    sleep.calls.clear()
    return engine


@pytest.fixture
def backend():
    return FakeBackend(durations={"a.mp3": 200.0, "b.mp3": 180.0, "c.mp3": 240.0,
                                  "d.mp3": 100.0, "e.mp3": 300.0})


@pytest.fixture
def playlist(backend, log):
    return PlaylistModel(backend=backend, log_func=log)


@pytest.fixture
def controller(engine, playlist, log):
    c = PlaybackController(engine=engine, playlist=playlist, log_func=log, bpm=1)
    yield c
    c._stop_periodic_tasks()


def track_paths(tmp_path, *names):
    paths = []
    for name in names:
        p = tmp_path / name
        p.write_bytes(b"")
        paths.append(p)
    return paths


@pytest.fixture
def tracks(tmp_path):
    def make(*names):
        return track_paths(tmp_path, *names)
    return make
