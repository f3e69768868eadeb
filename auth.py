from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from errors import AuthenticationRequired


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def issue_access_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def resolve_owner(token: Optional[str], max_age_hours: Optional[int] = None) -> int:
    """Owner id carried by a signed access token."""
    if not token:
        raise AuthenticationRequired()
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired as exc:
        raise AuthenticationRequired("Access token expired") from exc
    except BadSignature as exc:
        raise AuthenticationRequired("Invalid access token") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise AuthenticationRequired("Invalid access token")
    return user_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()
