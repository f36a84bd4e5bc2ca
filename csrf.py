import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


TOKEN_MAX_AGE_HOURS = 2


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="finance-csrf")


def generate_csrf_token(user_id: int, max_age_hours: int = TOKEN_MAX_AGE_HOURS) -> str:
    issued = int(time.time())
    return _serializer().dumps(
        {"u": user_id, "ts": issued, "exp": issued + max_age_hours * 3600}
    )


def validate_csrf_token(token: str, user_id: int) -> bool:
    """True when the token was signed by us, for this user, and has not expired."""
    if not token:
        return False
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False
    if not isinstance(data, dict) or data.get("u") != user_id:
        return False
    return int(time.time()) <= int(data.get("exp", 0))
