from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from larder.config import settings
from larder.models.core import Role

auth_scheme = HTTPBearer(auto_error=False)

ALL_ROLES = (Role.ADMIN, Role.KITCHEN, Role.DIRECTOR)

def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> dict:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return jwt.decode(creds.credentials, settings.APP_SECRET, algorithms=["HS256"],
                          issuer=settings.JWT_ISS, options={"require": ["sub", "exp"]})
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def require_role(*roles: Role):
    """Gate a route on the ``role`` claim; the services never look at the caller."""
    allowed = {r.value for r in (roles or ALL_ROLES)}
    def _dep(claims: dict = Depends(require_auth)) -> str:
        if claims.get("role") not in allowed:
            raise HTTPException(status_code=403, detail=f"Role {claims.get('role')} not allowed")
        return claims["sub"]
    return _dep
