"""Unit tests for auth/tokens.py -- TokenIssuer and TokenValidator.

Covers:
- access tokens validate for their subject right after issue
- claims carry name, email, department, role names and token_type
- refresh tokens carry the subject only
- expired, tampered, foreign-key and malformed tokens fail closed
- subject and token_type mismatches are rejected
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Identity
from auth.results import TokenError
from auth.roles import ROLE_CATALOG, RoleName
from auth.tokens import (
    ACCESS_TOKEN,
    DEFAULT_ACCESS_TTL,
    DEFAULT_REFRESH_TTL,
    REFRESH_TOKEN,
    SecretKeyProvider,
    TokenIssuer,
    TokenValidator,
)

KEY = "k" * 40
OTHER_KEY = "z" * 40


@pytest.fixture
def keys() -> SecretKeyProvider:
    return SecretKeyProvider(KEY)


@pytest.fixture
def issuer(keys: SecretKeyProvider) -> TokenIssuer:
    return TokenIssuer(keys)


@pytest.fixture
def validator(keys: SecretKeyProvider) -> TokenValidator:
    return TokenValidator(keys)


@pytest.fixture
def bob() -> Identity:
    return Identity(
        id=7,
        username="bob",
        email="bob@example.com",
        password_hash="x",
        full_name="Bob Park",
        department="Investigations",
    )


BOB_ROLES = [ROLE_CATALOG[RoleName.INVESTIGATOR_ALL], ROLE_CATALOG[RoleName.EMPLOYEE]]


class TestIssue:
    def test_default_ttls(self, issuer: TokenIssuer, bob: Identity) -> None:
        assert DEFAULT_ACCESS_TTL == 86400
        assert DEFAULT_REFRESH_TTL == 604800
        assert issuer.issue_access(bob, BOB_ROLES).expires_in == 86400
        assert issuer.issue_refresh("bob").expires_in == 604800

    def test_access_claims(self, issuer: TokenIssuer, bob: Identity) -> None:
        token = issuer.issue_access(bob, BOB_ROLES)
        claims = jwt.decode(token.value, KEY, algorithms=["HS256"])
        assert claims["sub"] == "bob"
        assert claims["token_type"] == ACCESS_TOKEN
        assert claims["name"] == "Bob Park"
        assert claims["email"] == "bob@example.com"
        assert claims["department"] == "Investigations"
        assert claims["roles"] == ["ROLE_INVESTIGATOR_ALL", "ROLE_EMPLOYEE"]
        assert claims["exp"] - claims["iat"] == 86400

    def test_refresh_claims_subject_only(self, issuer: TokenIssuer) -> None:
        token = issuer.issue_refresh("bob")
        claims = jwt.decode(token.value, KEY, algorithms=["HS256"])
        assert claims["token_type"] == REFRESH_TOKEN
        assert set(claims) == {"sub", "token_type", "iat", "exp"}

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            SecretKeyProvider("")


class TestValidate:
    def test_fresh_access_token_validates(self, issuer: TokenIssuer, validator: TokenValidator, bob: Identity) -> None:
        token = issuer.issue_access(bob, BOB_ROLES).value
        assert validator.validate(token, "bob")
        assert validator.validate(token, "bob", token_type=ACCESS_TOKEN)
        assert validator.extract_subject(token) == "bob"

    def test_wrong_subject(self, issuer: TokenIssuer, validator: TokenValidator, bob: Identity) -> None:
        token = issuer.issue_access(bob, BOB_ROLES).value
        assert not validator.validate(token, "mallory")

    def test_wrong_token_type(self, issuer: TokenIssuer, validator: TokenValidator) -> None:
        refresh = issuer.issue_refresh("bob").value
        assert validator.validate(refresh, "bob", token_type=REFRESH_TOKEN)
        assert not validator.validate(refresh, "bob", token_type=ACCESS_TOKEN)

    def test_expired(self, keys: SecretKeyProvider, validator: TokenValidator, bob: Identity) -> None:
        two_days_ago = datetime.now(timezone.utc) - timedelta(days=2)
        stale = TokenIssuer(keys, clock=lambda: two_days_ago).issue_access(bob, BOB_ROLES).value
        assert validator.extract_subject(stale) is TokenError.EXPIRED
        assert not validator.validate(stale, "bob")

    def test_refresh_outlives_access(self, keys: SecretKeyProvider, validator: TokenValidator, bob: Identity) -> None:
        two_days_ago = datetime.now(timezone.utc) - timedelta(days=2)
        old = TokenIssuer(keys, clock=lambda: two_days_ago)
        assert not validator.validate(old.issue_access(bob, BOB_ROLES).value, "bob")
        assert validator.validate(old.issue_refresh("bob").value, "bob")

    def test_foreign_key(self, validator: TokenValidator, bob: Identity) -> None:
        forged = TokenIssuer(SecretKeyProvider(OTHER_KEY)).issue_access(bob, BOB_ROLES).value
        assert validator.extract_subject(forged) is TokenError.SIGNATURE_INVALID
        assert not validator.validate(forged, "bob")

    def test_tampered_payload(self, issuer: TokenIssuer, validator: TokenValidator, bob: Identity) -> None:
        header, _payload, signature = issuer.issue_access(bob, BOB_ROLES).value.split(".")
        other_payload = issuer.issue_access(
            Identity(username="admin", email="a@example.com", password_hash="x", full_name="A"), BOB_ROLES
        ).value.split(".")[1]
        tampered = ".".join([header, other_payload, signature])
        assert validator.extract_subject(tampered) is TokenError.SIGNATURE_INVALID

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c", "Bearer xyz"])
    def test_malformed(self, validator: TokenValidator, garbage: str) -> None:
        assert validator.extract_subject(garbage) is TokenError.MALFORMED
        assert not validator.validate(garbage, "bob")

    @pytest.mark.parametrize("expected", [None, "", 42])
    def test_unusable_expected_subject(
        self, issuer: TokenIssuer, validator: TokenValidator, bob: Identity, expected
    ) -> None:
        token = issuer.issue_access(bob, BOB_ROLES).value
        assert validator.validate(token, expected) is False

    def test_missing_subject(self, validator: TokenValidator) -> None:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode({"token_type": ACCESS_TOKEN, "exp": exp}, KEY, algorithm="HS256")
        assert validator.extract_subject(token) is TokenError.MALFORMED
