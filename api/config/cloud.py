import os
from .base import BaseConfig, _flag

class CloudConfig(BaseConfig):
    PG_GCP_PATH = os.getenv("PG_GCP_PATH")  # project:region:instance
    PG_PORT = int(os.getenv("PG_PORT", "5432"))
    PG_USER = os.getenv("PG_USER")
    PG_PASS = os.getenv("PG_PASS")
    PG_DB   = os.getenv("PG_DB")

    REQUIRE_WEBHOOK_SIGNATURE = _flag("REQUIRE_WEBHOOK_SIGNATURE", "true")

    TORTOISE_ORM = {
        "use_tz": True,
        "timezone": "UTC",
        "connections": {
            "default": {
                "engine": "tortoise.backends.asyncpg",
                "credentials": {
                    "host": f"/cloudsql/{PG_GCP_PATH}",
                    "port": PG_PORT,
                    "user": PG_USER,
                    "password": PG_PASS,
                    "database": PG_DB,
                },
            }
        },
        "apps": {
            "models": {
                "models": ["models", "aerich.models"],
                "default_connection": "default",
            }
        },
    }
