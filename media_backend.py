"""
DJ Controller Link - Media Backend Module
Thin audio output layer on top of pygame.mixer.
"""

import threading

import pygame


class MediaLoadError(Exception):
    """A track could not be opened or decoded."""
    pass


class AudioBackend:
    """Interface the playlist model drives. Positions are in seconds."""

    def load(self, path):
        raise NotImplementedError

    def read_duration(self, path):
        """Length of ``path`` in seconds, or None when it cannot be told."""
        return None

    def play(self, start=0.0):
        raise NotImplementedError

    def pause(self):
        raise NotImplementedError

    def resume(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError

    def set_volume(self, level):
        """``level`` in 0.0 .. 1.0."""
        raise NotImplementedError

    def position(self):
        raise NotImplementedError

    def is_busy(self):
        raise NotImplementedError


class PygameAudioBackend(AudioBackend):
    """pygame.mixer.music streaming playback.

    mixer.music.get_pos() counts from the last play() call only, so the
    start offset of that call is tracked here.
    """

    def __init__(self, frequency=44100):
        self._frequency = frequency
        self._init_lock = threading.Lock()
        self._ready = False
        self._start_offset = 0.0
        self._paused = False

    def _ensure_mixer(self):
        with self._init_lock:
            if self._ready:
                return
            try:
                pygame.mixer.init(frequency=self._frequency)
            except pygame.error as e:
                raise MediaLoadError(f"Audio device unavailable: {e}") from e
            self._ready = True

    def load(self, path):
        self._ensure_mixer()
        try:
            pygame.mixer.music.load(str(path))
        except pygame.error as e:
            raise MediaLoadError(f"Cannot load {path}: {e}") from e
        self._start_offset = 0.0
        self._paused = False

    def read_duration(self, path):
        self._ensure_mixer()
        try:
            return float(pygame.mixer.Sound(str(path)).get_length())
        except (pygame.error, MemoryError):
            return None

    def play(self, start=0.0):
        start = max(0.0, float(start))
        try:
            pygame.mixer.music.play(start=start)
        except pygame.error:
            # Formats without seek support start from the top.
            pygame.mixer.music.play()
            start = 0.0
        self._start_offset = start
        self._paused = False

    def pause(self):
        pygame.mixer.music.pause()
        self._paused = True

    def resume(self):
        pygame.mixer.music.unpause()
        self._paused = False

    def stop(self):
        if self._ready:
            pygame.mixer.music.stop()
        self._paused = False

    def set_volume(self, level):
        if self._ready:
            pygame.mixer.music.set_volume(max(0.0, min(1.0, level)))

    def position(self):
        if not self._ready:
            return 0.0
        elapsed_ms = pygame.mixer.music.get_pos()
        if elapsed_ms < 0:
            return self._start_offset
        return self._start_offset + elapsed_ms / 1000.0

    def is_busy(self):
        return self._ready and (self._paused or pygame.mixer.music.get_busy())
