from typing import Optional

from fastapi import Header
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class AuthenticationError(Exception):
    pass


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def issue_access_token(user_id: int) -> str:
    return _serializer().dumps({"u": int(user_id)})


def decode_access_token(token: str, max_age_hours: Optional[int] = None) -> int:
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired as exc:
        raise AuthenticationError("Token expired") from exc
    except BadSignature as exc:
        raise AuthenticationError("Invalid token") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or user_id <= 0:
        raise AuthenticationError("Invalid token")
    return user_id


def current_owner_id(authorization: Optional[str] = Header(default=None)) -> int:
    if not authorization:
        raise AuthenticationError("Access token not provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Access token not provided")
    return decode_access_token(token.strip())
