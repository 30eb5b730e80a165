import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from logging_config import get_logger, setup_logging

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
setup_logging(LOG_LEVEL)
logger = get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "diagnostic-center-db")

ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET")
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", "3600"))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")

CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]
PORT = int(os.getenv("PORT", "5000"))

# Slot labels are wall-clock times at the center
TZ_NAME = os.getenv("TZ", "UTC")
try:
    SERVER_TIMEZONE = ZoneInfo(TZ_NAME)
except (ZoneInfoNotFoundError, ValueError):
    logger.warning("invalid_timezone", tz=TZ_NAME, fallback="UTC")
    SERVER_TIMEZONE = ZoneInfo("UTC")

if not ACCESS_TOKEN_SECRET:
    logger.warning("missing_setting", setting="ACCESS_TOKEN_SECRET", effect="token endpoints will fail")

if not STRIPE_SECRET_KEY:
    logger.warning("missing_setting", setting="STRIPE_SECRET_KEY", effect="payment intents will fail")
