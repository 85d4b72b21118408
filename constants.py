import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

MAX_ROOM_MEMBERS = int(os.getenv("MAX_ROOM_MEMBERS", 10))
# 0 deletes a room as soon as its last member leaves
EMPTY_ROOM_GRACE_SECONDS = float(os.getenv("EMPTY_ROOM_GRACE_SECONDS", 0))
ROOM_REAPER_INTERVAL_SECONDS = float(os.getenv("ROOM_REAPER_INTERVAL_SECONDS", 30))

CORS_ALLOW_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if origin.strip()]
