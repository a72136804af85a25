"""
DJ Controller Link - Configuration Module
Contains all configuration constants and settings.
"""

APP_TITLE = "DJ Controller"

# ================= SERIAL CONFIG =================
BAUDRATE = 9600
READ_TIMEOUT = 0.1            # semi-blocking read quantum
WRITE_TIMEOUT = 0.5
READER_IDLE_SLEEP = 0.05      # reader back-off while the port is not open
READ_CHUNK_MAX = 4096

# ================= LINK TIMING =================
INTER_BYTE_DELAY = 0.010      # after every byte
COUNTER_BUMP_DELAY = 0.020    # after every T/D/C/V
SHORTCUT_SETTLE_DELAY = 0.050  # after N/B, before the play-state byte
PERIPHERAL_BOOT_DELAY = 2.0   # DTR assert resets the board on open

# ================= PLAYBACK =================
DEFAULT_BPM = 120
TIME_SYNC_INTERVAL = 1.0
SEEK_STEP_SECONDS = 30
PREVIOUS_RESTART_THRESHOLD = 3
DEFAULT_VOLUME = 50
PLAYBACK_TICK_MS = 250

AUDIO_EXTENSIONS = (".mp3", ".wav", ".ogg")   # what SDL_mixer decodes; no AAC/m4a

# ================= MESSAGES =================
STATUS_CONNECTED = "Connected to {port}"
STATUS_DISCONNECTED = "Disconnected"
STATUS_LOST = "Lost connection to peripheral"

# ================= DEBUG =================
DEBUG = False
