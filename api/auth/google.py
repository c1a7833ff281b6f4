import asyncio
import logging

from fastapi.security import HTTPBearer
from google.auth import exceptions as google_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import id_token

from config import Config
from models import User

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def _decode(token: str) -> dict:
    return id_token.verify_oauth2_token(token, GoogleAuthRequest(), Config.GOOGLE_AUDIENCE)


async def verify_google_token_db(token: str):
    try:
        decoded = await asyncio.to_thread(_decode, token)
    except (ValueError, google_exceptions.GoogleAuthError) as e:
        if Config.DEBUG_AUTH:
            logger.info("[auth] token verification failed: %s: %s", type(e).__name__, e)
        return None

    email = decoded.get("email")
    if Config.DEBUG_AUTH:
        logger.info("[auth] decoded token email=%r aud=%r iss=%r", email, decoded.get("aud"), decoded.get("iss"))
    if not email:
        return None

    # Lookup existing user only; reject unknown accounts
    user = await User.get_or_none(email=email)
    if not user:
        if Config.DEBUG_AUTH:
            logger.info("[auth] user not found for email=%s", email)
        return None

    if user.disabled:
        if Config.DEBUG_AUTH:
            logger.info("[auth] user disabled email=%s", email)
        return None
    return user
