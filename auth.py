import logging
import os
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

from database import Database, get_db, serialize_doc, to_object_id, utcnow
from errors import AuthenticationError, AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialized user record without the password hash."""
    out = serialize_doc(doc)
    out.pop("password", None)
    return out


def create_access_token(user_id: str, role: str) -> str:
    payload = {
        "id": user_id,
        "role": role,
        "exp": utcnow() + timedelta(minutes=JWT_EXPIRES_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise AuthenticationError()
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthenticationError()
    if "id" not in payload:
        raise AuthenticationError()
    return payload


def authorize(*roles: str) -> Callable[..., Dict[str, Any]]:
    """
    Build a dependency that admits a request only for the given roles.

    The bearer token must decode and name an existing, active user;
    otherwise the request is rejected as unauthenticated. A known user whose
    role is not listed is rejected as forbidden. On success the user record
    (without password) is returned to the route as the caller identity.
    """

    def dependency(token: Optional[str] = Depends(oauth2_scheme),
                   db: Database = Depends(get_db)) -> Dict[str, Any]:
        payload = decode_access_token(token)
        try:
            user_oid = to_object_id(payload["id"], "User")
        except NotFoundError:
            raise AuthenticationError()
        user = db["user"].find_one({"_id": user_oid})
        if not user or not user.get("active", True):
            raise AuthenticationError()
        if roles and user.get("role") not in roles:
            logger.info("Role not permitted", extra={"user_id": str(user_oid), "role": user.get("role")})
            raise AuthorizationError()
        return public_user(user)

    return dependency


def ensure_owner_or_admin(identity: Dict[str, Any], user_id: Optional[str]) -> None:
    if user_id and identity["id"] != user_id and identity.get("role") != "admin":
        raise AuthorizationError("Forbidden: You can only access your own data")
