"""
DJ Controller Link - Signal Bridge Module
Provides thread-safe communication between worker threads and Qt UI.
"""

from PySide6.QtCore import QObject, Signal


class SignalBridge(QObject):
    """Signal bridge for thread-safe UI updates."""

    # Logging / status
    log_signal = Signal(str, str)                    # message, type
    status_signal = Signal(str)                      # status bar message

    # Peripheral link
    connection_signal = Signal(bool)                 # connected
    ports_signal = Signal(object)                    # list of port names
    operation_done_signal = Signal()                 # unlock connect controls

    # Playback
    playlist_signal = Signal(object, int)            # names, current index
    track_info_signal = Signal(str, int, int)        # name, number, total
    play_state_signal = Signal(bool)                 # is playing
    time_signal = Signal(int, object)                # position, duration or None
    volume_signal = Signal(int)                      # 0..100
