"""
Credential verifier.

Resolves an e-mail/password pair or a bearer token to an ``Identity``. The
ledger trusts the resolved identity's id and role without re-checking.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt
from loguru import logger
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .database import session_scope
from .errors import AccountBlockedError, InvalidCredentialsError, PermissionDeniedError
from .models import Identity
from .tables import User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def require_admin(actor: Identity) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError("Admin access required")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(identity: Identity, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": str(identity.id),
        "email": identity.email,
        "role": identity.role.value,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.token_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Optional[Identity]:
    settings = settings or get_settings()
    if token.startswith("Bearer "):
        token = token.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.token_algorithm])
        return Identity(id=UUID(payload["sub"]), email=payload["email"], role=payload["role"])
    except (JWTError, KeyError, ValueError) as e:
        logger.debug(f"Rejected access token: {e}")
        return None


class CredentialVerifier:
    def __init__(self, session_factory: Optional[sessionmaker] = None, settings: Optional[Settings] = None):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def verify(self, email: str, password: str) -> Identity:
        with session_scope(self.session_factory) as session:
            user = session.execute(
                select(User).where(User.email == email.strip().lower())
            ).scalar_one_or_none()
            if user is None or not verify_password(password, user.password_hash):
                raise InvalidCredentialsError("Invalid credentials")
            if not user.is_active:
                raise AccountBlockedError("Account is deactivated")
            return Identity(id=user.id, email=user.email, role=user.role)

    def issue_token(self, identity: Identity) -> str:
        return create_access_token(identity, self.settings)

    def resolve(self, token: str) -> Identity:
        """Decode a bearer token and check the account still exists and is active."""
        identity = decode_access_token(token, self.settings)
        if identity is None:
            raise InvalidCredentialsError("Invalid or expired token")

        with session_scope(self.session_factory) as session:
            user = session.get(User, identity.id)
            if user is None:
                raise InvalidCredentialsError("User not found")
            if not user.is_active:
                raise AccountBlockedError("Account is deactivated")
            # Role is read from the store, not the token.
            return Identity(id=user.id, email=user.email, role=user.role)
