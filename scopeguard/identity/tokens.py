"""Signed session token verification (PyJWT)."""

from __future__ import annotations

from typing import Any, Protocol

import jwt

from ..errors import MalformedToken, Unauthenticated


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        """Return verified claims or raise MalformedToken / Unauthenticated."""
        ...


class JwtTokenVerifier:
    """Verify HMAC or public-key signed JWTs."""

    def __init__(
        self,
        key: str,
        *,
        algorithms: list[str] | None = None,
        audience: str | None = None,
        issuer: str | None = None,
        leeway: float = 0,
    ):
        self._key = key
        self.algorithms = algorithms or ["HS256"]
        self.audience = audience
        self.issuer = issuer
        self.leeway = leeway

    def __repr__(self) -> str:
        return f"JwtTokenVerifier(algorithms={self.algorithms!r}, audience={self.audience!r}, issuer={self.issuer!r})"

    def verify(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str) or not token.strip():
            raise Unauthenticated("no session token")
        options = {"require": ["sub"], "verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                token.strip(),
                self._key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options=options,
            )
        except jwt.InvalidSignatureError as e:
            raise Unauthenticated(f"token rejected: {e}") from e
        except jwt.DecodeError as e:
            # Structure, encoding or signature decoding failed.
            raise MalformedToken(f"malformed token: {e}") from e
        except jwt.MissingRequiredClaimError as e:
            raise MalformedToken(f"malformed token: {e}") from e
        except jwt.InvalidTokenError as e:
            raise Unauthenticated(f"token rejected: {e}") from e
        if not isinstance(claims, dict):
            raise MalformedToken("malformed token: payload is not an object")
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise MalformedToken("malformed token: empty subject")
        return claims
