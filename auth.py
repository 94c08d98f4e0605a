import time
from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


@dataclass(frozen=True)
class AccessToken:
    tenant_id: Optional[str]
    user_id: int
    operator: bool = False


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def generate_access_token(
    tenant_id: Optional[str], user_id: int, *, operator: bool = False
) -> str:
    serializer = _serializer()
    token_data = {"t": tenant_id, "u": user_id, "op": operator, "ts": int(time.time())}
    return serializer.dumps(token_data)


def decode_access_token(
    token: str, max_age_hours: Optional[int] = None
) -> Optional[AccessToken]:
    settings = get_settings()
    max_age_hours = max_age_hours or settings.token_max_age_hours
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None

    if not isinstance(data, dict) or not isinstance(data.get("u"), int):
        return None
    tenant_id = data.get("t")
    operator = bool(data.get("op", False))
    if tenant_id is None and not operator:
        return None
    return AccessToken(tenant_id=tenant_id, user_id=data["u"], operator=operator)
