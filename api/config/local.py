import os
from dotenv import load_dotenv
from .base import BaseConfig, _flag

load_dotenv()

class LocalConfig(BaseConfig):
    PG_HOST = os.getenv("PG_HOST", "localhost")
    PG_PORT = int(os.getenv("PG_PORT", "5432"))
    PG_USER = os.getenv("PG_USER", "postgres")
    PG_PASS = os.getenv("PG_PASS", "")
    PG_DB   = os.getenv("PG_DB", "postgres")

    DEBUG_AUTH = _flag("DEBUG_AUTH", "true")

    TORTOISE_ORM = {
        "use_tz": True,
        "timezone": "UTC",
        "connections": {
            "default": f"postgres://{PG_USER}:{PG_PASS}@{PG_HOST}:{PG_PORT}/{PG_DB}"
        },
        "apps": {
            "models": {
                "models": ["models", "aerich.models"],
                "default_connection": "default",
            }
        },
    }


'''
docker run -d \
  --name creator-postgres \
  -e POSTGRES_USER=postgres \
  -e POSTGRES_PASSWORD=password \
  -e POSTGRES_DB=creator_local \
  -p 5432:5432 \
  postgres:16
'''
