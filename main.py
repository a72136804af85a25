"""
DJ Controller Link - Main Window
Playlist player that mirrors its state to a serial peripheral.
"""

import argparse
import sys
import threading
import time

from PySide6.QtCore import Qt, QTimer
from PySide6.QtWidgets import (
    QApplication, QComboBox, QFileDialog, QFrame, QHBoxLayout, QLabel,
    QListWidget, QMainWindow, QPushButton, QSlider, QStatusBar, QTextEdit,
    QVBoxLayout, QWidget,
)

import config
from controller import PlaybackController
from signal_bridge import SignalBridge
from utils import console_log, describe_port


def format_time(seconds):
    if seconds is None:
        return "--:--"
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


# ============================================================
# ======================= GUI APP ============================
# ============================================================

class DJControllerWindow(QMainWindow):
    def __init__(self, bpm=config.DEFAULT_BPM, initial_port=None):
        super().__init__()
        self.setWindowTitle(config.APP_TITLE)
        self.setMinimumSize(720, 560)

        self.bridge = SignalBridge()
        self.bridge.log_signal.connect(self._on_log)
        self.bridge.status_signal.connect(self._on_status)
        self.bridge.connection_signal.connect(self._on_connection)
        self.bridge.ports_signal.connect(self._on_ports)
        self.bridge.operation_done_signal.connect(self._on_operation_done)
        self.bridge.playlist_signal.connect(self._on_playlist)
        self.bridge.track_info_signal.connect(self._on_track_info)
        self.bridge.play_state_signal.connect(self._on_play_state)
        self.bridge.time_signal.connect(self._on_time)
        self.bridge.volume_signal.connect(self._on_volume)

        self.controller = PlaybackController(log_func=self._log, bpm=bpm)
        self.controller.status_callback = self.bridge.status_signal.emit
        self.controller.connection_callback = self.bridge.connection_signal.emit
        self.controller.playlist_callback = self.bridge.playlist_signal.emit
        self.controller.track_info_callback = self.bridge.track_info_signal.emit
        self.controller.play_state_callback = self.bridge.play_state_signal.emit
        self.controller.time_callback = self.bridge.time_signal.emit
        self.controller.volume_callback = self.bridge.volume_signal.emit

        self.operation_in_progress = False
        self._updating_playlist = False
        self._preferred_port = None
        self._build_ui()
        self._apply_stylesheet()

        self.playback_timer = QTimer(self)
        self.playback_timer.timeout.connect(self.controller.tick)
        self.playback_timer.start(config.PLAYBACK_TICK_MS)

        self._refresh_ports(select=initial_port)
        self._on_volume(self.controller.playlist.volume)
        self._on_track_info("No track loaded", 0, 0)

    # ─── UI Construction ─────────────────────────────────────
    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)
        main_layout = QVBoxLayout(central)
        main_layout.setContentsMargins(12, 12, 12, 12)
        main_layout.setSpacing(10)

        # ─── Connection bar ─────────────────────────────────
        conn_bar = QFrame()
        conn_bar.setObjectName("header")
        conn_layout = QHBoxLayout(conn_bar)
        conn_layout.addWidget(QLabel("Port:"))
        self.port_combo = QComboBox()
        self.port_combo.setMinimumWidth(200)
        conn_layout.addWidget(self.port_combo)

        self.refresh_btn = QPushButton("Refresh")
        self.refresh_btn.clicked.connect(lambda: self._refresh_ports())
        conn_layout.addWidget(self.refresh_btn)

        self.connect_btn = QPushButton("Connect")
        self.connect_btn.setCheckable(True)
        self.connect_btn.setObjectName("btnPrimary")
        self.connect_btn.clicked.connect(self._handle_connect_toggle)
        conn_layout.addWidget(self.connect_btn)

        conn_layout.addStretch()
        self.link_label = QLabel("● Disconnected")
        self.link_label.setObjectName("linkDisconnected")
        conn_layout.addWidget(self.link_label)
        main_layout.addWidget(conn_bar)

        # ─── Track info ─────────────────────────────────────
        self.track_label = QLabel()
        self.track_label.setObjectName("trackLabel")
        main_layout.addWidget(self.track_label)

        # ─── Playlist ───────────────────────────────────────
        self.playlist_view = QListWidget()
        self.playlist_view.currentRowChanged.connect(self._handle_track_selected)
        main_layout.addWidget(self.playlist_view, stretch=2)

        edit_row = QHBoxLayout()
        self.add_btn = QPushButton("Add…")
        self.add_btn.clicked.connect(self._handle_add)
        self.remove_btn = QPushButton("Remove")
        self.remove_btn.clicked.connect(self._handle_remove)
        self.clear_btn = QPushButton("Clear")
        self.clear_btn.clicked.connect(self.controller.clear_playlist)
        for btn in (self.add_btn, self.remove_btn, self.clear_btn):
            edit_row.addWidget(btn)
        edit_row.addStretch()
        main_layout.addLayout(edit_row)

        # ─── Transport ──────────────────────────────────────
        transport_row = QHBoxLayout()
        self.prev_btn = QPushButton("⏮")
        self.prev_btn.clicked.connect(self.controller.prev_track)
        self.play_btn = QPushButton("▶")
        self.play_btn.setObjectName("btnPrimary")
        self.play_btn.clicked.connect(self.controller.toggle_play)
        self.next_btn = QPushButton("⏭")
        self.next_btn.clicked.connect(self.controller.next_track)
        for btn in (self.prev_btn, self.play_btn, self.next_btn):
            transport_row.addWidget(btn)

        self.seek_slider = QSlider(Qt.Horizontal)
        self.seek_slider.setRange(0, 100)
        self.seek_slider.valueChanged.connect(self._handle_seek_value)
        self.seek_slider.sliderReleased.connect(
            lambda: self.controller.seek_percent(self.seek_slider.value())
        )
        transport_row.addWidget(self.seek_slider, stretch=1)

        self.time_label = QLabel("0:00 / --:--")
        transport_row.addWidget(self.time_label)

        transport_row.addWidget(QLabel("Vol"))
        self.volume_slider = QSlider(Qt.Horizontal)
        self.volume_slider.setRange(0, 100)
        self.volume_slider.setMaximumWidth(120)
        self.volume_slider.valueChanged.connect(self._handle_volume_value)
        transport_row.addWidget(self.volume_slider)
        main_layout.addLayout(transport_row)

        # ─── Log panel ──────────────────────────────────────
        self.log_panel = QTextEdit()
        self.log_panel.setReadOnly(True)
        self.log_panel.setObjectName("logPanel")
        main_layout.addWidget(self.log_panel, stretch=1)

        status_bar = QStatusBar()
        status_bar.showMessage("Ready")
        self.setStatusBar(status_bar)

    # ─── Stylesheet ──────────────────────────────────────────
    def _apply_stylesheet(self):
        self.setStyleSheet("""
            QMainWindow { background-color: #1e1e1e; }
            QWidget { color: #e0e0e0; font-size: 12px; }
            #header { background-color: #252526; border-radius: 6px; }
            #trackLabel { font-size: 15px; font-weight: bold; padding: 4px; }
            QPushButton {
                background-color: #3a3a3a; border: 1px solid #4a4a4a;
                border-radius: 4px; padding: 6px 12px;
            }
            QPushButton:hover { background-color: #454545; }
            QPushButton#btnPrimary { background-color: #0e639c; border-color: #1177bb; }
            QPushButton#btnPrimary:checked { background-color: #16825d; }
            QListWidget, QTextEdit, QComboBox {
                background-color: #252526; border: 1px solid #3c3c3c;
            }
            QListWidget::item:selected { background-color: #094771; }
            #logPanel { font-family: monospace; font-size: 11px; }
            #linkConnected { color: #77b255; }
            #linkDisconnected { color: #eb4d4b; }
        """)

    # ─── Log helper (called from threads via signal) ──────
    def _log(self, message, msg_type="info"):
        console_log(message, msg_type)
        if msg_type == "debug" and not config.DEBUG:
            return
        self.bridge.log_signal.emit(message, msg_type)

    def _on_log(self, message, msg_type):
        color_map = {
            "info":    "#c0c0c0",
            "success": "#77b255",
            "error":   "#eb4d4b",
            "warning": "#f2a93b",
            "debug":   "#808080",
        }
        color = color_map.get(msg_type, "#c0c0c0")
        timestamp = time.strftime("%H:%M:%S")
        self.log_panel.append(
            f'<span style="color:#555;">[{timestamp}]</span> '
            f'<span style="color:{color};">{message}</span>'
        )

    def _on_status(self, message):
        self.statusBar().showMessage(message)

    # ─── Connection ──────────────────────────────────────────
    def _refresh_ports(self, select=None):
        self._preferred_port = select or self.port_combo.currentText()
        self.refresh_btn.setEnabled(False)

        def run():
            self.bridge.ports_signal.emit(self.controller.list_ports())

        threading.Thread(target=run, daemon=True).start()

    def _on_ports(self, ports):
        preferred = self._preferred_port
        if preferred and preferred not in ports:
            ports = ports + [preferred]
        self.port_combo.clear()
        for i, port in enumerate(ports):
            self.port_combo.addItem(port)
            self.port_combo.setItemData(i, describe_port(port), Qt.ToolTipRole)
        if preferred:
            idx = self.port_combo.findText(preferred)
            if idx >= 0:
                self.port_combo.setCurrentIndex(idx)
        self.refresh_btn.setEnabled(not self.operation_in_progress)
        if not ports:
            self.statusBar().showMessage("No serial ports found")

    def _handle_connect_toggle(self, checked):
        if not checked:
            self.controller.disconnect()
            return

        port = self.port_combo.currentText()
        self.operation_in_progress = True
        self.connect_btn.setEnabled(False)
        self.refresh_btn.setEnabled(False)
        self.statusBar().showMessage(f"Connecting to {port}…")

        def run():
            try:
                self.controller.connect(port)
            finally:
                self.bridge.operation_done_signal.emit()

        threading.Thread(target=run, daemon=True).start()

    def _on_operation_done(self):
        self.operation_in_progress = False
        self.connect_btn.setEnabled(True)
        self.refresh_btn.setEnabled(True)

    def _on_connection(self, connected):
        self.connect_btn.blockSignals(True)
        self.connect_btn.setChecked(connected)
        self.connect_btn.setText("Disconnect" if connected else "Connect")
        self.connect_btn.blockSignals(False)
        if connected:
            self.link_label.setText("● Connected")
            self.link_label.setObjectName("linkConnected")
        else:
            self.link_label.setText("● Disconnected")
            self.link_label.setObjectName("linkDisconnected")
        self.link_label.style().unpolish(self.link_label)
        self.link_label.style().polish(self.link_label)

    # ─── Playlist ────────────────────────────────────────────
    def _handle_add(self):
        patterns = " ".join(f"*{ext}" for ext in config.AUDIO_EXTENSIONS)
        files, _ = QFileDialog.getOpenFileNames(
            self, "Add tracks", "", f"Audio Files ({patterns})"
        )
        if files:
            self.controller.add_tracks(files)

    def _handle_remove(self):
        row = self.playlist_view.currentRow()
        if row >= 0:
            self.controller.remove_track(row)

    def _handle_track_selected(self, row):
        if self._updating_playlist or row < 0:
            return
        self.controller.select_track(row)

    def _on_playlist(self, names, current_index):
        self._updating_playlist = True
        try:
            self.playlist_view.clear()
            self.playlist_view.addItems(names)
            if names:
                self.playlist_view.setCurrentRow(current_index)
        finally:
            self._updating_playlist = False

    def _on_track_info(self, name, number, total):
        if total:
            self.track_label.setText(f"{name}   ({number}/{total})")
        else:
            self.track_label.setText(name)

    # ─── Playback ────────────────────────────────────────────
    def _on_play_state(self, playing):
        self.play_btn.setText("⏸" if playing else "▶")

    def _on_time(self, position, duration):
        self.time_label.setText(f"{format_time(position)} / {format_time(duration)}")
        if self.seek_slider.isSliderDown():
            return
        percent = int(position * 100 / duration) if duration else 0
        with self.controller.seek_view_update():
            self.seek_slider.setValue(percent)

    def _handle_seek_value(self, value):
        if self.controller.seek_update_in_progress or self.seek_slider.isSliderDown():
            return
        self.controller.seek_percent(value)

    def _on_volume(self, level):
        with self.controller.volume_view_update():
            self.volume_slider.setValue(level)

    def _handle_volume_value(self, value):
        if self.controller.volume_update_in_progress:
            return
        self.controller.set_volume(value)

    def closeEvent(self, event):
        self.playback_timer.stop()
        self.controller.shutdown()
        event.accept()


# ============================================================
# ===================== ENTRY POINT ==========================
# ============================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=config.APP_TITLE)
    parser.add_argument("--port", default=None, help="serial port to preselect")
    parser.add_argument("--bpm", type=int, default=config.DEFAULT_BPM)
    parser.add_argument("--debug", action="store_true")
    return parser.parse_args(argv)


def main():
    args = parse_args()
    config.DEBUG = args.debug
    app = QApplication(sys.argv)
    app.setStyle("Fusion")
    window = DJControllerWindow(bpm=max(1, args.bpm), initial_port=args.port)
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
