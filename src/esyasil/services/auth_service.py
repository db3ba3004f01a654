from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import jwt

from ..errors import ConfigurationError, UnauthorizedError
from ..models.user import AuthenticatedUser


logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> AuthenticatedUser: ...


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthorizedError("missing bearer token")
    return token


class JWTTokenVerifier:
    """
    Verifies identity tokens with PyJWT.

    Either a shared `secret` (HS256) or a `jwks_url` (RS256, keys fetched and
    cached by `jwt.PyJWKClient`) must be configured.
    """

    def __init__(
        self,
        secret: str | None = None,
        jwks_url: str | None = None,
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        if not secret and not jwks_url:
            raise ConfigurationError("JWT secret or JWKS URL is required")
        self._secret = secret
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None
        self._audience = audience
        self._issuer = issuer

    async def verify(self, token: str) -> AuthenticatedUser:
        if self._jwks_client is not None:
            # Key lookup may hit the network
            claims = await asyncio.to_thread(self._decode, token)
        else:
            claims = self._decode(token)

        uid = claims.get("sub") or claims.get("user_id")
        if not uid:
            raise UnauthorizedError("token has no subject")
        return AuthenticatedUser(
            uid=str(uid),
            email=claims.get("email"),
            display_name=claims.get("name"),
        )

    def _decode(self, token: str) -> Dict[str, Any]:
        options = {"verify_exp": True, "verify_aud": self._audience is not None}
        try:
            if self._jwks_client is not None:
                signing_key = self._jwks_client.get_signing_key_from_jwt(token)
                key: Any = signing_key.key
                algorithms = ["RS256"]
            else:
                key = self._secret
                algorithms = ["HS256"]
            return jwt.decode(
                token,
                key,
                algorithms=algorithms,
                audience=self._audience,
                issuer=self._issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise UnauthorizedError("expired token") from exc
        except jwt.PyJWTError as exc:
            logger.info("Token rejected: %s", exc)
            raise UnauthorizedError("invalid token") from exc
