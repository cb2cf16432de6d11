"""
Session token verification.

Tokens are HS256 JWTs minted by the login flow, carried in the ``token``
cookie or an ``Authorization: Bearer`` header.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from jose import JWTError, jwt

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger, set_user_context

from ..models import SessionUser


class SessionVerifier:
    """Turns a request's session token into a :class:`SessionUser`."""

    def __init__(self, secret: str, algorithm: str = "HS256", cookie_name: str = "token"):
        self.secret = secret
        self.algorithm = algorithm
        self.cookie_name = cookie_name
        self.logger = get_logger("storefront.auth.session")

    def _extract_token(self, request: Request) -> Optional[str]:
        token = request.cookies.get(self.cookie_name)
        if token:
            return token

        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            return authorization[7:].strip() or None
        return None

    def verify(self, token: str) -> SessionUser:
        try:
            claims: Dict[str, Any] = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            self.logger.info("Session token rejected", error=str(e))
            raise AuthenticationError("Unauthorised user!")

        user_id = claims.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Unauthorised user!", {"reason": "missing id claim"})

        return SessionUser(
            id=user_id,
            email=claims.get("email", ""),
            user_name=claims.get("userName", ""),
            role=claims.get("role", "user"),
            claims=claims,
        )

    async def current_user(self, request: Request) -> SessionUser:
        """FastAPI dependency for routes that need a signed-in user."""
        token = self._extract_token(request)
        if not token:
            raise AuthenticationError("Unauthorised user!")

        user = self.verify(token)
        set_user_context(user.id)
        return user

    async def current_admin(self, request: Request) -> SessionUser:
        """FastAPI dependency for admin routes."""
        user = await self.current_user(request)
        if not user.is_admin:
            raise AuthorizationError("Admin access required")
        return user


def issue_token(secret: str, claims: Dict[str, Any], algorithm: str = "HS256") -> str:
    """Sign a session token. Used by tooling and tests; login lives elsewhere."""
    return jwt.encode(claims, secret, algorithm=algorithm)
