from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings, get_settings


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.session_secret, salt="ledger-session")


def issue_token(user_id: int, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return _serializer(settings).dumps({"u": user_id})


def verify_token(token: str, settings: Optional[Settings] = None) -> Optional[int]:
    """Return the user id a token was issued for, or None when it is unusable."""
    settings = settings or get_settings()
    try:
        data = _serializer(settings).loads(
            token, max_age=settings.session_max_age_hours * 3600
        )
    except (SignatureExpired, BadSignature):
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    return user_id
