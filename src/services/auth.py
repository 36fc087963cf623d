"""
Principal resolution from session tokens.

The identity subsystem issues HS256 JWTs carrying the principal id in
"sub" and the role in "role". This module only verifies them.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog

from shared.schemas import Principal, Role
from src.services.exceptions import Forbidden, Unauthenticated

logger = structlog.get_logger()

AUTH_COOKIE = "auth-token"


class TokenVerifier:
    """Verifies bearer tokens and turns them into principals."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def resolve(self, token: Optional[str]) -> Principal:
        """
        Decode a JWT into a Principal.

        Raises:
            Unauthenticated: If the token is missing, invalid or expired
        """
        if not token:
            raise Unauthenticated()
        if not self.secret:
            logger.error("jwt_secret_not_configured")
            raise Unauthenticated()

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("token_expired")
            raise Unauthenticated("Session expired")
        except jwt.InvalidTokenError as e:
            logger.info("token_invalid", error_type=type(e).__name__)
            raise Unauthenticated()

        try:
            role = Role(payload.get("role", Role.VIEWER.value))
        except ValueError:
            logger.warning("token_role_unknown")
            raise Unauthenticated()

        # ":" separates cache key segments
        principal_id = str(payload["sub"])
        if not principal_id or ":" in principal_id:
            logger.warning("token_subject_invalid")
            raise Unauthenticated()

        return Principal(id=principal_id, role=role)

    def issue(self, principal: Principal, expires_in: timedelta = timedelta(hours=24)) -> str:
        """Sign a token for a principal (local development and tests)."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": principal.id,
            "role": principal.role.value,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def require_role(principal: Principal, minimum: Role) -> Principal:
    """
    Ensure principal's role is at least minimum.

    Raises:
        Forbidden: If the role is below the required level
    """
    if principal.role.rank < minimum.rank:
        logger.warning("role_insufficient", principal_id=principal.id, role=principal.role.value, required=minimum.value)
        raise Forbidden()
    return principal
