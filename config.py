import logging
import os

import structlog

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ahmed_mart")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

# Directory holding the locally persisted cart and location keys
STATE_DIR = os.getenv("STATE_DIR", ".state")

# Cookie naming the client session that owns signed-out local state
SESSION_COOKIE = "ahmed_mart_session"
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", 30 * 24 * 3600))

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org/reverse")

SERVE_EVERYWHERE_WHEN_NO_AREAS = os.getenv("SERVE_EVERYWHERE_WHEN_NO_AREAS", "true").lower() in ("1", "true", "yes")
ROLE_CHECK_TIMEOUT_SECONDS = float(os.getenv("ROLE_CHECK_TIMEOUT_SECONDS", 6))

FREE_DELIVERY_THRESHOLD = 199
FLAT_DELIVERY_FEE = 29
PLATFORM_FEE = 5
DEFAULT_MAX_QUANTITY = 10

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL):
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
