"""
auth/tokens.py -- Bearer token issuance and validation (python-jose, HS256).

Three small pieces:

  SecretKeyProvider: the signing/verification key boundary. Key storage and
       rotation live outside this service; everything else here only asks the
       provider for a key and an algorithm.

  TokenIssuer: builds access tokens (identity claims + role names, 24h TTL)
       and refresh tokens (subject only, 7d TTL). Pure: no persistence, no
       shared state, safe to call concurrently.

  TokenValidator: verifies structure, signature and expiry. Fails closed --
       validate() returns False and decode()/extract_subject() return a
       TokenError value on any problem. Nothing raises past this module.

Claims:
  sub         username
  token_type  "access" | "refresh"; the refresh endpoint rejects access tokens
              and the bearer dependency rejects refresh tokens
  iat / exp   issued-at / expiry (epoch seconds)
  name, email, department, roles   access tokens only

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hmac
import logging
from datetime import timedelta
from typing import Any, Union

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import Identity, Role
from auth.results import Token, TokenError
from core.clock import Clock, to_iso, utc_now

logger = logging.getLogger("kmportal.auth.tokens")

ACCESS_TOKEN = "access"  # noqa: S105 -- token type label, not a secret
REFRESH_TOKEN = "refresh"  # noqa: S105
BEARER = "Bearer"

DEFAULT_ACCESS_TTL = 86400
DEFAULT_REFRESH_TTL = 604800


class SecretKeyProvider:
    """Serves the HMAC key used to sign and verify tokens.

    HS256 is symmetric, so both methods return the same secret. An asymmetric
    provider would return a private key from signing_key() and the matching
    public key from verification_key().
    """

    algorithm = "HS256"

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("Token signing key cannot be empty")
        self._secret_key = secret_key

    def signing_key(self) -> str:
        return self._secret_key

    def verification_key(self) -> str:
        return self._secret_key


class TokenIssuer:
    def __init__(
        self,
        keys: SecretKeyProvider,
        access_ttl_seconds: int = DEFAULT_ACCESS_TTL,
        refresh_ttl_seconds: int = DEFAULT_REFRESH_TTL,
        clock: Clock = utc_now,
    ) -> None:
        self._keys = keys
        self._access_ttl = access_ttl_seconds
        self._refresh_ttl = refresh_ttl_seconds
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._access_ttl

    def issue_access(self, identity: Identity, roles: list[Role]) -> Token:
        """Encode an access token carrying the identity's display claims and role names."""
        claims = {
            "name": identity.full_name,
            "email": identity.email,
            "department": identity.department,
            "roles": [r.name for r in roles],
        }
        return self._issue(identity.username, ACCESS_TOKEN, self._access_ttl, claims)

    def issue_refresh(self, username: str) -> Token:
        """Encode a refresh token. It carries the subject only."""
        return self._issue(username, REFRESH_TOKEN, self._refresh_ttl, {})

    def _issue(self, subject: str, token_type: str, ttl: int, extra: dict[str, Any]) -> Token:
        issued_at = self._clock()
        expires_at = issued_at + timedelta(seconds=ttl)
        payload = {
            **extra,
            "sub": subject,
            "token_type": token_type,
            "iat": issued_at,
            "exp": expires_at,
        }
        value = jwt.encode(payload, self._keys.signing_key(), algorithm=self._keys.algorithm)
        return Token(value=value, token_type=token_type, expires_in=ttl, expires_at=to_iso(expires_at))


class TokenValidator:
    def __init__(self, keys: SecretKeyProvider) -> None:
        self._keys = keys

    def decode(self, token: str) -> Union[dict, TokenError]:
        """Verify a token and return its claims, or the TokenError describing why not.

        The unverified parse runs first so a structurally broken token is
        reported as MALFORMED rather than lumped in with signature failures.
        """
        if not isinstance(token, str) or not token:
            return TokenError.MALFORMED
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return TokenError.MALFORMED
        try:
            claims = jwt.decode(token, self._keys.verification_key(), algorithms=[self._keys.algorithm])
        except ExpiredSignatureError:
            return TokenError.EXPIRED
        except JWTClaimsError:
            return TokenError.MALFORMED
        except JWTError:
            return TokenError.SIGNATURE_INVALID
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject or "exp" not in claims:
            return TokenError.MALFORMED
        return claims

    def extract_subject(self, token: str) -> Union[str, TokenError]:
        """Return the username a token was issued to, or the TokenError.

        Callers must still call validate() against the identity they resolve;
        a subject on its own is not an authorization decision.
        """
        claims = self.decode(token)
        if isinstance(claims, TokenError):
            return claims
        return claims["sub"]

    def validate(self, token: str, expected_subject: str, token_type: str | None = None) -> bool:
        """Return True only for a correctly signed, unexpired token issued to expected_subject.

        When token_type is given the token's token_type claim must match too.
        """
        if not isinstance(expected_subject, str) or not expected_subject:
            return False
        claims = self.decode(token)
        if isinstance(claims, TokenError):
            logger.debug("Token rejected: %s", claims.value)
            return False
        if not hmac.compare_digest(claims["sub"].encode("utf-8"), expected_subject.encode("utf-8")):
            return False
        if token_type is not None and claims.get("token_type") != token_type:
            return False
        return True
