STATE_DIR_NAME = ".kanban_sync"
CONFIG_FILE = "config.yaml"

DEFAULT_WS_URL = "ws://localhost:18790/ws"
DEFAULT_SECURE_WS_PATH = "/ws"
WS_URL_ENV = "KANBAN_SYNC_WS_URL"
API_URL_ENV = "KANBAN_SYNC_API_URL"
DEFAULT_API_URL = "http://localhost:3000"

DEFAULT_RECONNECT_DELAY = 1.0  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 30.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_HTTP_TIMEOUT = 10.0

CLEAN_CLOSE_CODE = 1000

SESSION_STARTED = "session.started"
SESSION_UPDATED = "session.updated"
SESSION_COMPLETED = "session.completed"
SESSION_CANCELLED = "session.cancelled"

SESSION_EVENT_TYPES = frozenset({
    SESSION_STARTED,
    SESSION_UPDATED,
    SESSION_COMPLETED,
    SESSION_CANCELLED,
})

PING_TYPE = "ping"
