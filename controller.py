"""
DJ Controller Link - Controller Module
Mediates between the playlist model, the sync engine and the UI.

Media events become target-state requests on the sync engine; intents the
peripheral sends become playlist operations. The controller keeps no
playback state of its own.
"""

import threading
from contextlib import contextmanager

from config import DEFAULT_BPM, TIME_SYNC_INTERVAL
from playlist_model import PlaylistModel
from sync_engine import Direction, PlaybackState, SyncEngine
from utils import PeriodicTask, console_log


class PlaybackController:
    OBSERVERS = (
        "status_callback",                  # (message)
        "connection_callback",              # (connected)
        "playlist_callback",                # (names, current_index)
        "track_info_callback",              # (name, number, total)
        "play_state_callback",              # (is_playing)
        "time_callback",                    # (position, duration or None)
        "volume_callback",                  # (level)
        "peripheral_time_update_callback",  # (position); not sent on the wire
    )

    def __init__(self, engine=None, playlist=None, log_func=None, bpm=DEFAULT_BPM):
        self.log = log_func or console_log
        self.engine = engine or SyncEngine(log_func=self.log)
        self.playlist = playlist or PlaylistModel(log_func=self.log)
        self.bpm = bpm

        self.seek_update_in_progress = False
        self.volume_update_in_progress = False
        self._local = threading.local()

        for name in self.OBSERVERS:
            setattr(self, name, None)

        self._beat_task = PeriodicTask("BeatEmitter", 60.0 / bpm, self._on_beat, self.log)
        self._time_task = PeriodicTask(
            "PeripheralTimeSync", TIME_SYNC_INTERVAL, self._on_time_sync, self.log
        )

        self.engine.set_status_callback(self._on_engine_status)
        self.engine.bind_intent_handler(self)

        self.playlist.on_play_state_changed = self._on_play_state_changed
        self.playlist.on_track_changed = self._on_track_changed
        self.playlist.on_position_changed = self._on_position_changed
        self.playlist.on_volume_changed = self._on_volume_changed
        self.playlist.on_playlist_changed = self._on_playlist_changed

    def _notify(self, name, *args):
        callback = getattr(self, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.log(f"{name} failed: {e}", "error")

    # ================= PERIPHERAL SYNC =================

    @contextmanager
    def _suppressed_sync(self):
        """Media events raised on this thread do not reach the engine."""
        previous = getattr(self._local, "suppress", False)
        self._local.suppress = True
        try:
            yield
        finally:
            self._local.suppress = previous

    def _push_state(self):
        if getattr(self._local, "suppress", False):
            return
        self.sync_peripheral()

    def _playlist_target(self):
        index, count, playing = self.playlist.snapshot()
        return PlaybackState.from_playlist(index, count, playing)

    def sync_peripheral(self):
        """Request the playlist's current state from the engine.

        The playlist is read under the engine lock, so whichever thread
        sends last sends the newest state. An empty playlist restarts the
        shadow from the origin instead of walking the peripheral's counters
        down.
        """
        return self.engine.request_target_state(self._playlist_target)

    def _step(self, direction):
        """Move one track and mirror it with the N/B shortcut when possible."""
        with self._suppressed_sync():
            old_index, index, count, playing = self.playlist.step(direction is Direction.NEXT)

        if count == 0 or index == old_index:
            return self.sync_peripheral()

        expected = (old_index + 1) % count if direction is Direction.NEXT else (old_index - 1) % count
        if index != expected:
            return self.sync_peripheral()
        return self.engine.request_track_change(
            direction, playing,
            expected=(old_index + 1, count),
            fallback=self._playlist_target,
        )

    # ================= PERIPHERAL INTENTS =================
    # play/pause/seek/status are called on the serial reader thread and
    # only queue work on the intent worker; the reader never takes the
    # write lock. next/prev are already called on the worker.

    def on_play(self):
        self.engine.post_intent(self.playlist.play)

    def on_pause(self):
        self.engine.post_intent(self.playlist.pause)

    def on_next(self):
        self._step(Direction.NEXT)

    def on_prev(self):
        self._step(Direction.PREV)

    def on_seek_relative(self, seconds):
        self.engine.post_intent(self._seek_relative, seconds)

    def on_status_request(self):
        self.engine.post_intent(self.sync_peripheral)

    def _seek_relative(self, seconds):
        if self.playlist.seek_relative(seconds):
            self._push_state()

    # ================= MEDIA EVENTS =================

    def _on_play_state_changed(self, is_playing):
        self._notify("play_state_callback", is_playing)
        if is_playing:
            self._start_periodic_tasks()
        else:
            self._stop_periodic_tasks()
        self._push_state()

    def _on_track_changed(self, index):
        self._publish_track_info()
        self._publish_playlist()
        self._publish_time()
        self._push_state()

    def _on_position_changed(self, seconds):
        self._publish_time()

    def _on_volume_changed(self, level):
        with self.volume_view_update():
            self._notify("volume_callback", level)

    def _on_playlist_changed(self):
        self._publish_playlist()
        self._publish_track_info()
        self._publish_time()
        self._push_state()

    def _publish_playlist(self):
        self._notify("playlist_callback", self.playlist.track_names(), self.playlist.current_index)

    def _publish_track_info(self):
        if self.playlist.track_count > 0:
            index = self.playlist.current_index
            self._notify(
                "track_info_callback",
                self.playlist.track_name(index), index + 1, self.playlist.track_count,
            )
        else:
            self._notify("track_info_callback", "No track loaded", 0, 0)

    def _publish_time(self):
        with self.seek_view_update():
            self._notify("time_callback", self.playlist.position, self.playlist.duration)

    # ================= VIEW SYNC GUARDS =================

    @contextmanager
    def seek_view_update(self):
        previous = self.seek_update_in_progress
        self.seek_update_in_progress = True
        try:
            yield
        finally:
            self.seek_update_in_progress = previous

    @contextmanager
    def volume_view_update(self):
        previous = self.volume_update_in_progress
        self.volume_update_in_progress = True
        try:
            yield
        finally:
            self.volume_update_in_progress = previous

    # ================= PERIODIC TASKS =================

    def _start_periodic_tasks(self):
        if not self._beat_task.running:
            self._beat_task.start()
        if not self._time_task.running:
            self._time_task.start()

    def _stop_periodic_tasks(self):
        self._beat_task.stop()
        self._time_task.stop()

    def _on_beat(self):
        if self.playlist.is_playing:
            self.engine.emit_beat()

    def _on_time_sync(self):
        if self.playlist.is_playing:
            self._notify("peripheral_time_update_callback", self.playlist.position)

    # ================= APPLICATION SURFACE =================

    def list_ports(self):
        return self.engine.list_ports()

    @property
    def is_connected(self):
        return self.engine.is_connected

    def connect(self, port_name):
        if not port_name:
            self._notify("status_callback", "No port selected")
            self._notify("connection_callback", False)
            return False
        connected = self.engine.connect(port_name)
        self._notify("connection_callback", connected)
        if connected:
            self.sync_peripheral()
        return connected

    def disconnect(self):
        if self.playlist.is_playing:
            self.playlist.pause()
        self.engine.disconnect()
        self._notify("connection_callback", False)

    def add_tracks(self, files):
        added = self.playlist.add_tracks(files)
        if added:
            self.log(f"Added {len(added)} track(s)", "info")
        return len(added)

    def remove_track(self, index):
        return self.playlist.remove_track(index)

    def clear_playlist(self):
        self.playlist.clear()

    def select_track(self, index):
        return self.playlist.set_current_index(index)

    def play(self):
        return self.playlist.play()

    def pause(self):
        return self.playlist.pause()

    def toggle_play(self):
        return self.playlist.toggle()

    def next_track(self):
        return self._step(Direction.NEXT)

    def prev_track(self):
        return self._step(Direction.PREV)

    def seek_percent(self, percent):
        if self.seek_update_in_progress:
            return False
        if not self.playlist.seek_percent(percent):
            return False
        self._push_state()
        return True

    def set_volume(self, level):
        if self.volume_update_in_progress:
            return False
        return self.playlist.set_volume(level)

    def tick(self):
        self.playlist.tick()

    def shutdown(self):
        self._stop_periodic_tasks()
        self.disconnect()
        self.playlist.stop()
        self.engine.shutdown()

    # ================= STATUS =================

    def _on_engine_status(self, message):
        self.log(message, "info" if self.engine.is_connected else "warning")
        self._notify("status_callback", message)
        self._notify("connection_callback", self.engine.is_connected)
