"""User accounts (users.json) and signed access tokens."""
import asyncio
import logging
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .errors import AuthenticationFailed, Conflict, ValidationError
from .jsondoc import read_array, write_array
from .models import ROLE_USER, utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def public_user(user: dict) -> dict:
    """Everything about a user that may leave the server."""
    return {
        "id": user["id"],
        "username": user["username"],
        "name": user.get("name") or user["username"],
        "role": user.get("role") or ROLE_USER,
    }


class UserStore:
    def __init__(self, document: Path):
        self.document = Path(document)
        self._lock = asyncio.Lock()

    async def find_by_username(self, username: str) -> Optional[dict]:
        for user in await read_array(self.document):
            if user.get("username") == username:
                return user
        return None

    async def register(self, name: str, email: str, username: str, password: str) -> dict:
        name, email, username = name.strip(), email.strip(), username.strip()
        if not (name and email and username and password):
            raise ValidationError("All fields are required")

        hashed = await asyncio.to_thread(pwd_context.hash, password)
        async with self._lock:
            users = await read_array(self.document)
            if any(u.get("username") == username for u in users):
                raise Conflict("Username already taken")
            user = {
                "id": uuid.uuid4().hex,
                "name": name,
                "email": email,
                "username": username,
                "password": hashed,
                "role": ROLE_USER,
                "createdAt": utcnow().isoformat(),
            }
            users.append(user)
            await write_array(self.document, users)

        logger.info("Registered user %s", username)
        return public_user(user)

    async def authenticate(self, username: str, password: str) -> dict:
        if not username or not password:
            raise ValidationError("Username and password are required")
        user = await self.find_by_username(username)
        if user is None or not user.get("password"):
            raise AuthenticationFailed("Invalid credentials")
        ok = await asyncio.to_thread(pwd_context.verify, password, user["password"])
        if not ok:
            raise AuthenticationFailed("Invalid credentials")
        return public_user(user)


class TokenService:
    """HS256 access tokens carrying the user's identity claims."""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_hours: int = 24):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(hours=ttl_hours)

    def issue(self, user: dict) -> str:
        claims = {
            "sub": user["id"],
            "username": user["username"],
            "name": user.get("name") or user["username"],
            "role": user.get("role") or ROLE_USER,
            "exp": utcnow() + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Optional[dict]:
        """Claims of a valid token, or None when bad or expired."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.debug("Rejected token: %s", exc)
            return None
        if not claims.get("sub") or not claims.get("username"):
            return None
        return claims
