import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

TOKEN_MAX_AGE_SECS = 2 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="tracker-csrf")


def generate_csrf_token(user_id: Optional[int] = None) -> str:
    if user_id is None:
        user_id = get_settings().default_user_id
    return _serializer().dumps({"u": user_id, "ts": int(time.time())})


def validate_csrf_token(token: Optional[str], user_id: Optional[int] = None) -> bool:
    if not token:
        return False
    if user_id is None:
        user_id = get_settings().default_user_id
    try:
        data = _serializer().loads(token, max_age=TOKEN_MAX_AGE_SECS)
    except BadSignature:
        return False
    return isinstance(data, dict) and data.get("u") == user_id
