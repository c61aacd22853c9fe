import os

STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Undelivered signals older than this are dropped
SIGNAL_RETENTION_SECONDS = int(os.getenv("SIGNAL_RETENTION_SECONDS", 120))
ROOM_IDLE_TTL_SECONDS = int(os.getenv("ROOM_IDLE_TTL_SECONDS", 3600))
ROOM_SWEEP_INTERVAL_SECONDS = int(os.getenv("ROOM_SWEEP_INTERVAL_SECONDS", 60))

ID_LENGTH = int(os.getenv("ID_LENGTH", 8))

RELAY_MAX_MEMBERS = int(os.getenv("RELAY_MAX_MEMBERS", 50))
RELAY_OUTBOX_SIZE = int(os.getenv("RELAY_OUTBOX_SIZE", 100))

# Hint for clients, the server never long-polls
POLL_INTERVAL_MS = int(os.getenv("POLL_INTERVAL_MS", 500))

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)
