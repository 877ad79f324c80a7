from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from ats.config import Settings
from ats.errors import Unauthorized
from ats.models import AuthenticatedUser, Role, TokenPair, User

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class PasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return self._context.verify(password, password_hash)
        except ValueError:
            # Malformed or unknown hash format.
            return False


class TokenIssuer:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _encode(self, claims: dict[str, Any], secret: str, lifetime: timedelta) -> str:
        issued_at = datetime.now(UTC)
        payload = {**claims, "iat": issued_at, "exp": issued_at + lifetime}
        return jwt.encode(payload, secret, algorithm=self.settings.jwt_algorithm)

    def _decode(self, token: str, secret: str, token_type: str) -> dict[str, Any]:
        payload = jwt.decode(token, secret, algorithms=[self.settings.jwt_algorithm])
        if payload.get("type") != token_type:
            raise JWTError(f"expected a {token_type} token")
        return payload

    def issue(self, user: User) -> TokenPair:
        access_token = self._encode(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": str(user.role),
                "type": ACCESS_TOKEN_TYPE,
            },
            self.settings.jwt_secret,
            timedelta(minutes=self.settings.access_token_expire_minutes),
        )
        refresh_token = self._encode(
            {"sub": str(user.id), "type": REFRESH_TOKEN_TYPE},
            self.settings.refresh_token_secret,
            timedelta(days=self.settings.refresh_token_expire_days),
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def authenticate(self, access_token: str) -> AuthenticatedUser:
        try:
            payload = self._decode(access_token, self.settings.jwt_secret, ACCESS_TOKEN_TYPE)
            return AuthenticatedUser(
                id=int(payload["sub"]),
                email=payload["email"],
                role=Role(payload["role"]),
            )
        except (JWTError, KeyError, ValueError) as exc:
            raise Unauthorized("Invalid or expired token") from exc

    def refresh_subject(self, refresh_token: str) -> int:
        try:
            payload = self._decode(
                refresh_token,
                self.settings.refresh_token_secret,
                REFRESH_TOKEN_TYPE,
            )
            return int(payload["sub"])
        except (JWTError, KeyError, ValueError) as exc:
            raise Unauthorized("Invalid refresh token") from exc
