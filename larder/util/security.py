import jwt
from datetime import datetime, timedelta, timezone
from larder.config import settings
from larder.models.core import Role

def create_token(sub: str, role: Role | str, *, minutes: int = 12 * 60) -> str:
    """Mint a bearer token for ``sub`` acting as ``role``."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=minutes)
    role_code = role.value if isinstance(role, Role) else Role(role).value
    payload = {"sub": sub, "role": role_code, "iss": settings.JWT_ISS,
               "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(payload, settings.APP_SECRET, algorithm="HS256")
