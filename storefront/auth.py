from fastapi import Depends, Header, HTTPException
from jose import jwt
from storefront.config import settings


def verify_token(authorization: str = Header(...)) -> dict:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Unsupported authorization scheme")
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return claims


def require_admin(identity: dict = Depends(verify_token)) -> dict:
    if identity.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def is_admin(identity: dict) -> bool:
    return identity.get("role") == "admin"
