import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

HOST = os.getenv("HOST", "localhost")
PORT = int(os.getenv("PORT", 8080))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

STATIC_DIR = os.getenv("STATIC_DIR", "static")

# Outbound fan-out
DISPATCH_QUEUE_SIZE = int(os.getenv("DISPATCH_QUEUE_SIZE", 1000))
SEND_TIMEOUT = float(os.getenv("SEND_TIMEOUT", 5.0))

# Liveness
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", 30.0))
HEARTBEAT_TIMEOUT = float(os.getenv("HEARTBEAT_TIMEOUT", 120.0))
# Protocol-level pings sent by uvicorn; listen-only browsers answer these without app code
WS_PING_INTERVAL = float(os.getenv("WS_PING_INTERVAL", 20.0))
WS_PING_TIMEOUT = float(os.getenv("WS_PING_TIMEOUT", 20.0))

# Rooms created over HTTP expire if nobody joins them within this many seconds
EMPTY_ROOM_TTL = int(os.getenv("EMPTY_ROOM_TTL", 600))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
