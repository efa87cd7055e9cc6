import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

DEFAULT_DISPLAY_NAME = "Anonymous"
ROOM_ID_LENGTH = 8

ROOM_NOT_FOUND_MESSAGE = "Room not found"
ALREADY_IN_ROOM_MESSAGE = "Already in a room"

# Frames buffered per channel; past this a non-reading client gets no more output
SEND_QUEUE_SIZE = int(os.getenv("SEND_QUEUE_SIZE", 256))
