import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///database.db")
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", 30))

LIFECYCLE_TICK_SECONDS = float(os.getenv("LIFECYCLE_TICK_SECONDS", 60))
BID_MAX_ATTEMPTS = int(os.getenv("BID_MAX_ATTEMPTS", 5))

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:8080,http://localhost:3000,http://localhost:55753",
).split(",")

HOST = os.getenv("HOST", "localhost")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
