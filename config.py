"""
config.py
=========
Environment-driven settings for the checkout service.

Values are read from the process environment. A `.env` file next to this
module is loaded first; variables already set in the environment win.
"""

import os
from typing import List, Literal

from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(BASE_DIR, ".env"))


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_cors(value: str) -> List[str]:
    """
    Parses CORS origins from a comma-separated or list-like string.
    Example: "http://localhost,http://127.0.0.1" -> ["http://localhost", "http://127.0.0.1"]
    """
    if not value:
        return [
            "http://localhost:5173",  # Vite dev server
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ]
    value = value.strip()
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    return [i.strip().strip('"').strip("'") for i in value.split(",") if i.strip()]


class Settings:
    # ── General ──
    ENVIRONMENT: Literal["local", "staging", "production"] = os.getenv("ENVIRONMENT", "local")
    # Include exception text and tracebacks in 500 responses
    DEBUG: bool = _as_bool(os.getenv("DEBUG", "false"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    API_PREFIX: str = os.getenv("API_PREFIX", "/api")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # ── Database ──
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./skillup.db")

    # ── Razorpay ──
    # The key secret signs orders and is the HMAC key for payment signatures.
    RAZORPAY_KEY_ID: str = os.getenv("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET: str = os.getenv("RAZORPAY_KEY_SECRET", "")
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "INR")

    # ── CORS ──
    RAW_CORS_ORIGINS: str = os.getenv("BACKEND_CORS_ORIGINS", "")
    BACKEND_CORS_ORIGINS: List[str] = parse_cors(RAW_CORS_ORIGINS)

    @property
    def gateway_configured(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)


settings = Settings()
