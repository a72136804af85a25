"""
DJ Controller Link - Utility Functions Module
Contains helpers for port discovery, console logging and periodic workers.
"""

import threading
import time

from serial.tools import list_ports

import config


# ================= CONSOLE LOGGING =================

LOG_TAGS = {
    "info": "INFO",
    "success": " OK ",
    "warning": "WARN",
    "error": "ERR ",
    "debug": "DBG ",
}


def console_log(message, msg_type="info"):
    """Default log_func: timestamped line on stdout."""
    if msg_type == "debug" and not config.DEBUG:
        return
    tag = LOG_TAGS.get(msg_type, "INFO")
    print(f"[{time.strftime('%H:%M:%S')}] [{tag}] {message}", flush=True)


# ================= SERIAL PORT DETECTION =================

def find_serial_ports():
    """List device names of every serial port the OS reports."""
    try:
        ports = [p.device for p in list_ports.comports() if p.device]
    except Exception:
        return []
    return sorted(ports)


def describe_port(device):
    """Human-readable description for a port, or the bare device name."""
    try:
        for p in list_ports.comports():
            if p.device == device:
                parts = [p.description or "", p.manufacturer or ""]
                text = " / ".join(x for x in parts if x and x != "n/a")
                return f"{device} ({text})" if text else device
    except Exception:
        pass
    return device


# ================= PERIODIC WORKER =================

class PeriodicTask:
    """Fixed-rate callback on its own daemon thread.

    The first call happens immediately after start(). stop() is safe to call
    from any thread, including from inside the callback.
    """

    def __init__(self, name, interval, callback, log_func=None):
        self.name = name
        self.interval = float(interval)
        self.callback = callback
        self.log = log_func or console_log
        self._stop_event = threading.Event()
        self._thread = None
        self._lock = threading.Lock()

    @property
    def running(self):
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()

    def start(self):
        with self._lock:
            self._halt_locked()
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name=self.name, daemon=True
            )
            self._thread.start()

    def stop(self):
        with self._lock:
            self._halt_locked()

    def _halt_locked(self):
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self.interval * 2))

    def _run(self, stop_event):
        next_run = time.monotonic()
        while not stop_event.is_set():
            try:
                self.callback()
            except Exception as e:
                self.log(f"{self.name} callback failed: {e}", "error")
            next_run += self.interval
            delay = next_run - time.monotonic()
            if delay < 0:
                # Fell behind; realign instead of bursting.
                next_run = time.monotonic()
                delay = 0
            if stop_event.wait(delay):
                break
