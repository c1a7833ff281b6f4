import os
from dotenv import load_dotenv

# The checked-in .env wins over the shell so `ENV=cloud` leftovers don't point
# a local worker at the production database or SES account.
load_dotenv(override=True)


def _get_env() -> str:
    return os.getenv("ENV", "local").strip().lower()


_env = _get_env()

if _env == "cloud":
    from .cloud import CloudConfig as Config
else:
    from .local import LocalConfig as Config

__all__ = ["Config"]
