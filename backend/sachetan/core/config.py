"""Application configuration.

Environment variables override all defaults. A local `.env` next to the
backend directory is loaded for development; real deployments set the
variables in the process environment.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./sachetan.db")

    # Public URL used in payment links and for serving stored media
    BASE_URL: str = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")
    MEDIA_DIR: str = os.getenv("MEDIA_DIR", str(_BACKEND_DIR / "media"))

    # Admin API (bearer token, must be set via .env)
    ADMIN_API_TOKEN: str = os.getenv("ADMIN_API_TOKEN", "")
    if not ADMIN_API_TOKEN:
        if ENVIRONMENT == "production":
            raise ValueError("⛔ CRITICAL: ADMIN_API_TOKEN must be set in production environment.")
        import warnings
        warnings.warn(
            "⚠️  ADMIN_API_TOKEN not set in environment. Admin endpoints will reject every request.",
            RuntimeWarning,
        )

    # WhatsApp numbers that receive order / lead / booking notifications
    ADMIN_WHATSAPP: List[str] = _csv(os.getenv("ADMIN_WHATSAPP", ""))

    # Twilio WhatsApp transport (dev mode logs instead of sending when unset)
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_WHATSAPP_FROM: str = os.getenv("TWILIO_WHATSAPP_FROM", "whatsapp:+14155238886")
    MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "1500"))

    # Groq LLM
    GROQ_API_KEY: str = os.getenv("GROQ_API_KEY", "")
    GROQ_MODEL: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    GROQ_TIMEOUT_SECONDS: float = float(os.getenv("GROQ_TIMEOUT_SECONDS", "20"))

    # Embeddings / vector store
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    EMBEDDING_DIM: int = int(os.getenv("EMBEDDING_DIM", "384"))
    VECTOR_DB_PATH: str = os.getenv("VECTOR_DB_PATH", str(_BACKEND_DIR / "lancedb"))
    RAG_NAMESPACE: str = os.getenv("RAG_NAMESPACE", "website_docs")
    RAG_MEMORY_NAMESPACE: str = os.getenv("RAG_MEMORY_NAMESPACE", "customer_memory")
    RAG_TOP_K: int = int(os.getenv("RAG_TOP_K", "4"))
    RAG_MIN_SCORE: float = float(os.getenv("RAG_MIN_SCORE", "0.35"))

    # Tavily web search (non-strict fallback only)
    TAVILY_API_KEY: str = os.getenv("TAVILY_API_KEY", "")
    BUSINESS_NAME: str = os.getenv("BUSINESS_NAME", "Sachetan Packaging")
    BUSINESS_DOMAIN: str = os.getenv("BUSINESS_DOMAIN", "sachetanpackaging.in")
    BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "Asia/Kolkata")

    # Payments
    RAZORPAY_KEY_SECRET: str = os.getenv("RAZORPAY_KEY_SECRET", "")

    # Per-phone inbound rate limiting
    RATE_LIMIT_MESSAGES: int = int(os.getenv("RATE_LIMIT_MESSAGES", "10"))
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

    # Admin API rate limiting (per token / IP)
    ADMIN_RATE_LIMIT_REQUESTS: int = int(os.getenv("ADMIN_RATE_LIMIT_REQUESTS", "100"))

    # Periodic jobs
    ENABLE_SCHEDULER: bool = _flag("ENABLE_SCHEDULER", "true")

    CORS_ORIGINS: List[str] = _csv(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )


settings = Settings()
