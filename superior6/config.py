import os

DB_PATH = os.getenv("DB_PATH", "/data/app.db")
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")

APP_SECRET = os.getenv("APP_SECRET", "change-this-secret")

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@superior6.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "changeme")

DEFAULT_SEASON = os.getenv("DEFAULT_SEASON", "2024-25")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
