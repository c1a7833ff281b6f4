import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "y", "on"}


def _csv(name: str, default: str) -> set[str]:
    return {v.strip().lower() for v in os.getenv(name, default).split(",") if v.strip()}


class BaseConfig:
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    AWS_REGION = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1"
    FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@example.com")
    FROM_NAME = os.getenv("FROM_NAME", "Creator Studio")
    SES_CONFIGURATION_SET = os.getenv("SES_CONFIGURATION_SET") or None
    NOTIFY_EMAIL = os.getenv("NOTIFY_EMAIL") or None

    PUBLIC_BASE_URL = (os.getenv("PUBLIC_BASE_URL") or "http://localhost:8000").rstrip("/")
    UNSUBSCRIBE_SECRET = os.getenv("UNSUBSCRIBE_SECRET", "")

    GRAPH_API_BASE = os.getenv("GRAPH_API_BASE", "https://graph.facebook.com/v21.0").rstrip("/")
    INSTAGRAM_VERIFY_TOKEN = os.getenv("INSTAGRAM_VERIFY_TOKEN", "")
    INSTAGRAM_APP_SECRET = os.getenv("INSTAGRAM_APP_SECRET", "")
    REQUIRE_WEBHOOK_SIGNATURE = _flag("REQUIRE_WEBHOOK_SIGNATURE")

    DELIVERY_TIMEOUT_SECONDS = float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "10"))
    DELIVERY_MAX_ATTEMPTS = int(os.getenv("DELIVERY_MAX_ATTEMPTS", "3"))
    DELIVERY_RETRY_BACKOFF_MINUTES = int(os.getenv("DELIVERY_RETRY_BACKOFF_MINUTES", "5"))

    WORKFLOW_MAX_STEPS_PER_ADVANCE = int(os.getenv("WORKFLOW_MAX_STEPS_PER_ADVANCE", "200"))
    WORKFLOW_TICK_BATCH_SIZE = int(os.getenv("WORKFLOW_TICK_BATCH_SIZE", "100"))
    WORKFLOW_TICK_CONCURRENCY = int(os.getenv("WORKFLOW_TICK_CONCURRENCY", "10"))
    # A run left in `running` longer than this is treated as orphaned and resumed by tick.
    WORKFLOW_RUN_LEASE_SECONDS = int(os.getenv("WORKFLOW_RUN_LEASE_SECONDS", "300"))

    KEYWORD_INDEX_TTL_SECONDS = float(os.getenv("KEYWORD_INDEX_TTL_SECONDS", "30"))

    SMART_AI_PLANS = _csv("SMART_AI_PLANS", "pro")
    SMART_AI_UPSELL_MESSAGE = os.getenv(
        "SMART_AI_UPSELL_MESSAGE",
        "Thanks for reaching out! Smart AI replies are a Pro feature, so a team member will get back to you soon.",
    )

    CRON_SECRET = os.getenv("CRON_SECRET") or None

    GOOGLE_AUDIENCE = os.getenv("GOOGLE_AUDIENCE")
    SERVER_URL = os.getenv("SERVER_URL", "http://127.0.0.1:8000")
    DEBUG_AUTH = _flag("DEBUG_AUTH")
    OFFLINE_MODE = _flag("OFFLINE_MODE")
    OFFLINE_ADMIN_EMAIL = os.getenv("OFFLINE_ADMIN_EMAIL", "devadmin@example.com")
