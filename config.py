import os

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally

class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis ---
    REDIS_URL = os.environ.get("REDIS_URL")

    # --- Telnyx (SMS / WhatsApp notifications) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

    # --- Google Calendar feeds ---
    GOOGLE_CALENDAR_API_KEY = os.environ.get("GOOGLE_CALENDAR_API_KEY")
    GOOGLE_CALENDAR_TIMEOUT = int(os.environ.get("GOOGLE_CALENDAR_TIMEOUT", "15"))
    GOOGLE_CALENDAR_MAX_PAGES = int(os.environ.get("GOOGLE_CALENDAR_MAX_PAGES", "10"))

    # --- Matching ---
    DEFAULT_COUNTRY_CODE = os.environ.get("DEFAULT_COUNTRY_CODE", "60")
    MATCH_TOLERANCE_MINUTES = int(os.environ.get("MATCH_TOLERANCE_MINUTES", "60"))

    # --- Reminders ---
    REMINDER_LOOKAHEAD_MINUTES = int(os.environ.get("REMINDER_LOOKAHEAD_MINUTES", "60"))
    DUE_REMINDER_BATCH_SIZE = int(os.environ.get("DUE_REMINDER_BATCH_SIZE", "100"))

    # --- Display timezone and logging ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Kuala_Lumpur")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

settings = Settings()
