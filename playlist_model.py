"""
DJ Controller Link - Playlist Model Module
Playlist bookkeeping and playback control over an AudioBackend.

Observers are plain attributes (``on_track_changed`` and friends). They are
called after the model lock has been released, so an observer always reads
the settled state of the model, never a half-applied change.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config import DEFAULT_VOLUME, PREVIOUS_RESTART_THRESHOLD, AUDIO_EXTENSIONS
from media_backend import MediaLoadError, PygameAudioBackend
from utils import console_log


@dataclass
class TrackInfo:
    path: Path
    name: str
    duration: Optional[float] = None    # seconds, known once loaded

    @classmethod
    def from_path(cls, path):
        path = Path(path)
        return cls(path=path.resolve(), name=path.name)

    def __str__(self):
        return self.name


def is_supported_audio(path):
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


class PlaylistModel:
    OBSERVERS = (
        "on_play_state_changed",    # (is_playing)
        "on_track_changed",         # (index)
        "on_position_changed",      # (seconds)
        "on_volume_changed",        # (level)
        "on_playlist_changed",      # ()
    )

    def __init__(self, backend=None, log_func=None):
        self.backend = backend or PygameAudioBackend()
        self.log = log_func or console_log

        self._lock = threading.RLock()
        self._depth = 0
        self._events = []

        self._tracks = []
        self._index = 0
        self._playing = False
        self._loaded = False        # current track is loaded in the backend
        self._suspended = False     # loaded and paused mid-track
        self._position = 0
        self._volume = DEFAULT_VOLUME
        self.volume_update_in_progress = False

        for name in self.OBSERVERS:
            setattr(self, name, None)

    # ---------- change batching ----------

    @contextmanager
    def _batch(self):
        self._lock.acquire()
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            events = []
            if self._depth == 0:
                events, self._events = self._events, []
            self._lock.release()
        for name, args in events:
            self._notify(name, *args)

    def _emit(self, name, *args):
        self._events.append((name, args))

    def _notify(self, name, *args):
        callback = getattr(self, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.log(f"{name} observer failed: {e}", "error")

    # ---------- queries ----------

    @property
    def track_count(self):
        return len(self._tracks)

    @property
    def current_index(self):
        return self._index

    @property
    def is_playing(self):
        return self._playing

    @property
    def volume(self):
        return self._volume

    @property
    def position(self):
        """Whole seconds into the current track."""
        with self._lock:
            if self._playing and self._loaded:
                return int(self.backend.position())
            return self._position

    @property
    def duration(self):
        """Duration of the current track in seconds; None while unknown."""
        with self._lock:
            if not self._tracks:
                return None
            return self._tracks[self._index].duration

    def track_names(self):
        with self._lock:
            return [t.name for t in self._tracks]

    def track_name(self, index):
        with self._lock:
            if 0 <= index < len(self._tracks):
                return self._tracks[index].name
            return ""

    @property
    def current_track_name(self):
        with self._lock:
            if not self._tracks:
                return "No track"
            return self._tracks[self._index].name

    def snapshot(self):
        """(index, count, playing) read in one go."""
        with self._lock:
            return self._index, len(self._tracks), self._playing

    # ---------- playlist editing ----------

    def add_track(self, path):
        with self._batch():
            track = TrackInfo.from_path(path)
            self._tracks.append(track)
            self._emit("on_playlist_changed")
            return track

    def add_tracks(self, paths):
        """Append every playable file of ``paths``; others are skipped."""
        with self._batch():
            added = []
            for p in paths:
                if not is_supported_audio(p):
                    self.log(f"Skipping {Path(p).name}: unsupported format", "warning")
                    continue
                added.append(self.add_track(p))
            return added

    def remove_track(self, index):
        with self._batch():
            if not 0 <= index < len(self._tracks):
                return False
            removing_current = index == self._index
            if removing_current:
                self.stop()

            del self._tracks[index]

            if not self._tracks:
                self._index = 0
                self._position = 0
                self.stop()
            elif index <= self._index:
                if removing_current:
                    if self._index >= len(self._tracks):
                        self._index = len(self._tracks) - 1
                    self._position = 0
                else:
                    self._index -= 1
                self._emit("on_track_changed", self._index)

            self._emit("on_playlist_changed")
            return True

    def clear(self):
        with self._batch():
            self.stop()
            self._tracks.clear()
            self._index = 0
            self._position = 0
            self._emit("on_playlist_changed")

    # ---------- navigation ----------

    def set_current_index(self, index):
        with self._batch():
            if not 0 <= index < len(self._tracks) or index == self._index:
                return False
            was_playing = self._playing
            self.stop()

            self._index = index
            self._position = 0
            self._emit("on_track_changed", self._index)
            self._emit("on_position_changed", self._position)

            if was_playing:
                self.play()
            return True

    def next_track(self):
        with self._batch():
            if not self._tracks:
                return False
            return self.set_current_index((self._index + 1) % len(self._tracks))

    def previous_track(self):
        with self._batch():
            if not self._tracks:
                return False
            if self.position > PREVIOUS_RESTART_THRESHOLD:
                self.seek(0)
                return False
            count = len(self._tracks)
            return self.set_current_index((self._index - 1) % count)

    def step(self, forward=True):
        """Move one track; returns (old_index, index, count, playing)."""
        with self._batch():
            old_index = self._index
            if forward:
                self.next_track()
            else:
                self.previous_track()
            return (old_index,) + self.snapshot()

    # ---------- transport ----------

    def play(self):
        with self._batch():
            if not self._tracks or self._playing:
                return False
            if not self._loaded and not self._load_with_skip():
                return False

            if self._suspended:
                self.backend.resume()
            else:
                self.backend.play(start=self._position)
            self._suspended = False
            self._playing = True
            self._emit("on_play_state_changed", True)
            return True

    def _load_with_skip(self):
        """Load the current track, skipping forward past unloadable ones."""
        for _ in range(len(self._tracks)):
            track = self._tracks[self._index]
            try:
                self.backend.load(track.path)
            except MediaLoadError as e:
                self.log(f"Skipping {track.name}: {e}", "warning")
                self._index = (self._index + 1) % len(self._tracks)
                self._position = 0
                self._emit("on_track_changed", self._index)
                continue
            self.backend.set_volume(self._volume / 100.0)
            if track.duration is None:
                track.duration = self.backend.read_duration(track.path)
            self._loaded = True
            self._suspended = False
            self._emit("on_position_changed", self._position)
            return True
        self.log("No playable track in playlist", "error")
        return False

    def pause(self):
        with self._batch():
            if not self._playing or not self._loaded:
                return False
            self._position = int(self.backend.position())
            self.backend.pause()
            self._playing = False
            self._suspended = True
            self._emit("on_play_state_changed", False)
            return True

    def stop(self):
        with self._batch():
            was_playing = self._playing
            if self._loaded:
                if self._playing:
                    self._position = int(self.backend.position())
                self.backend.stop()
            self._loaded = False
            self._suspended = False
            self._playing = False
            if was_playing:
                self._emit("on_play_state_changed", False)

    def toggle(self):
        with self._batch():
            return self.pause() if self._playing else self.play()

    # ---------- seeking ----------

    def seek(self, seconds):
        with self._batch():
            if not self._tracks:
                return False
            duration = self._tracks[self._index].duration
            if seconds < 0 or (duration is not None and seconds > duration):
                return False
            self._position = int(seconds)
            if self._loaded:
                if self._playing:
                    self.backend.play(start=self._position)
                elif self._suspended:
                    # Restart from the new offset on the next play().
                    self.backend.stop()
                    self._suspended = False
            self._emit("on_position_changed", self._position)
            return True

    def seek_percent(self, percent):
        with self._batch():
            duration = self.duration
            if duration is None:
                return False
            percent = max(0, min(100, percent))
            return self.seek(int(percent * duration / 100.0))

    def seek_relative(self, seconds):
        with self._batch():
            if not self._tracks:
                return False
            target = self.position + seconds
            duration = self.duration
            if target < 0:
                target = 0
            elif duration is not None and target > duration:
                target = int(duration)
            return self.seek(target)

    # ---------- volume ----------

    def set_volume(self, level):
        if self.volume_update_in_progress:
            return False
        self.volume_update_in_progress = True
        try:
            if not 0 <= level <= 100:
                return False
            with self._lock:
                self._volume = int(level)
                if self._loaded:
                    self.backend.set_volume(self._volume / 100.0)
            self._notify("on_volume_changed", self._volume)
            return True
        finally:
            self.volume_update_in_progress = False

    # ---------- polling ----------

    def tick(self):
        """Poll the backend: publish position, advance at end of track."""
        with self._batch():
            if not self._playing or not self._loaded:
                return
            position = int(self.backend.position())
            if position != self._position:
                self._position = position
                self._emit("on_position_changed", position)
            if not self.backend.is_busy():
                self._end_of_media()

    def _end_of_media(self):
        self.log(f"Finished {self.current_track_name}", "debug")
        if len(self._tracks) > 1:
            self.next_track()
            return
        self.stop()
        self._position = 0
        self._emit("on_position_changed", 0)
