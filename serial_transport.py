"""
DJ Controller Link - Serial Transport Module
Owns the single byte channel to the peripheral: open/close, a background
reader thread and paced single-byte writes.
"""

import threading
import time
from enum import Enum

import serial

from config import (
    BAUDRATE, READ_TIMEOUT, WRITE_TIMEOUT, READER_IDLE_SLEEP, READ_CHUNK_MAX,
    INTER_BYTE_DELAY, STATUS_CONNECTED, STATUS_DISCONNECTED, STATUS_LOST,
)
from utils import console_log, find_serial_ports


# ================= EXCEPTIONS =================

class TransportError(Exception):
    """Base class for serial link errors."""
    pass


class PortUnavailableError(TransportError):
    """The port could not be enumerated or opened."""
    pass


class WriteFailure(TransportError):
    """A byte could not be delivered; the link is not usable."""
    pass


class ConnectionState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    LOST = "lost"


# ================= READER THREAD =================

class SerialReaderThread(threading.Thread):
    """Read whatever the peripheral sends and hand it to a consumer."""

    def __init__(self, ser, on_data, on_error, log_func=None):
        super().__init__(name="SerialReader", daemon=True)
        self.ser = ser
        self.on_data = on_data
        self.on_error = on_error
        self.log = log_func or console_log
        self.running = True

    def _read_available(self):
        try:
            waiting = int(getattr(self.ser, "in_waiting", 0) or 0)
        except (TypeError, ValueError):
            waiting = 0
        return self.ser.read(min(max(waiting, 1), READ_CHUNK_MAX))

    def run(self):
        while self.running:
            if not self.ser or not self.ser.is_open:
                time.sleep(READER_IDLE_SLEEP)
                continue
            try:
                chunk = self._read_available()
            except (serial.SerialException, OSError, TypeError, AttributeError) as exc:
                # pyserial raises TypeError/AttributeError when the fd is
                # yanked away by close() mid-read.
                if self.running:
                    self.on_error(exc)
                break
            if not chunk:
                continue
            try:
                self.on_data(bytes(chunk))
            except Exception as exc:
                self.log(f"Inbound handler failed: {exc}", "error")

    def stop(self):
        self.running = False


# ================= TRANSPORT =================

class SerialTransport:
    """One serial port at 9600 8N1 with 10 ms spacing between bytes."""

    def __init__(self, log_func=None, serial_factory=None, sleep=None, clock=None):
        self.log = log_func or console_log
        self._serial_factory = serial_factory or serial.Serial
        self._sleep = sleep or time.sleep
        self._clock = clock or time.monotonic

        self._ser = None
        self._reader = None
        self._port_name = None
        self._state = ConnectionState.CLOSED
        self._opened_at = None
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()

        self._bytes_handler = None
        self._status_callback = None

    # ---------- properties ----------

    @property
    def state(self):
        return self._state

    @property
    def is_open(self):
        return self._state is ConnectionState.OPEN

    @property
    def port_name(self):
        return self._port_name

    @property
    def opened_at(self):
        """Clock reading taken when the port was opened, or None."""
        return self._opened_at

    # ---------- registration ----------

    def set_status_callback(self, callback):
        self._status_callback = callback

    def on_bytes_available(self, handler):
        self._bytes_handler = handler

    def _emit_status(self, message):
        if self._status_callback:
            try:
                self._status_callback(message)
            except Exception as e:
                self.log(f"Status callback failed: {e}", "error")

    # ---------- lifecycle ----------

    @staticmethod
    def list_ports():
        return find_serial_ports()

    def open(self, port_name):
        if self._state is not ConnectionState.CLOSED:
            self.close()

        kwargs = {
            "port": port_name,
            "baudrate": BAUDRATE,
            "bytesize": serial.EIGHTBITS,
            "stopbits": serial.STOPBITS_ONE,
            "parity": serial.PARITY_NONE,
            "timeout": READ_TIMEOUT,
            "write_timeout": WRITE_TIMEOUT,
        }
        try:
            ser = self._serial_factory(**kwargs)
        except (serial.SerialException, OSError, ValueError) as exc:
            reason = self._friendly_open_error(port_name, exc)
            self.log(reason, "error")
            raise PortUnavailableError(reason) from exc

        with self._state_lock:
            self._ser = ser
            self._port_name = port_name
            self._opened_at = self._clock()
            self._state = ConnectionState.OPEN

        self._reader = SerialReaderThread(ser, self._on_data, self._on_read_error, self.log)
        self._reader.start()

        self.log(f"Opened {port_name} at {BAUDRATE} 8N1", "success")
        self._emit_status(STATUS_CONNECTED.format(port=port_name))

    def close(self):
        with self._state_lock:
            previous = self._state
            ser, reader = self._ser, self._reader
            self._ser = None
            self._reader = None
            self._opened_at = None
            self._state = ConnectionState.CLOSED

        if reader is not None:
            reader.stop()
        if ser is not None:
            try:
                if ser.is_open:
                    ser.close()
            except (serial.SerialException, OSError) as e:
                self.log(f"Error closing {self._port_name}: {e}", "warning")
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=READ_TIMEOUT * 8)

        if previous is not ConnectionState.CLOSED:
            self.log(f"Closed {self._port_name}", "info")
            self._emit_status(STATUS_DISCONNECTED)

    def _friendly_open_error(self, port_name, exc):
        raw = str(exc)
        lower = raw.lower()
        if "permission denied" in lower:
            return (
                f"Cannot access {port_name} (permission denied or busy). "
                "Close any app using the port and reconnect device."
            )
        if "could not open port" in lower or "no such file" in lower:
            return f"Could not open {port_name}. Check cable/port and retry."
        return f"Failed to open {port_name}: {raw}"

    # ---------- I/O ----------

    def write(self, byte):
        """Send one byte, flush, then hold the line for the inter-byte gap."""
        data = bytes([byte]) if isinstance(byte, int) else bytes(byte)
        if len(data) != 1:
            raise ValueError(f"write() takes exactly one byte, got {len(data)}")

        with self._write_lock:
            ser = self._ser
            if self._state is not ConnectionState.OPEN or ser is None:
                raise WriteFailure(f"Link is {self._state.value}")
            try:
                written = ser.write(data)
                ser.flush()
            except (serial.SerialException, OSError) as exc:
                self._mark_lost(f"Write failed: {exc}")
                raise WriteFailure(str(exc)) from exc
            if written is not None and written < 1:
                self._mark_lost("Write stalled")
                raise WriteFailure("Serial write stalled")
            self._sleep(INTER_BYTE_DELAY)

    def _on_data(self, data):
        handler = self._bytes_handler
        if handler is not None:
            handler(data)

    def _on_read_error(self, exc):
        self._mark_lost(f"Serial reader error: {exc}")

    def _mark_lost(self, reason):
        with self._state_lock:
            if self._state is not ConnectionState.OPEN:
                return
            self._state = ConnectionState.LOST
        self.log(reason, "error")
        self._emit_status(STATUS_LOST)
