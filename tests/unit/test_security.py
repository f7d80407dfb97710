"""
Unit tests for security utilities (password hashing, JWT tokens, webhook signatures).
"""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest
from jose import JWTError, jwt

from locall.config.settings import get_settings
from locall.security import (
    compute_hubspot_signature,
    create_access_token,
    create_refresh_token,
    generate_session_token,
    hash_password,
    verify_hubspot_signature,
    verify_password,
    verify_token,
)

pytestmark = pytest.mark.unit

settings = get_settings()


class TestPasswordHashing:
    """Test password hashing and verification."""

    def test_hash_password_returns_salted_string(self):
        password = "testpassword123"
        hash1 = hash_password(password)
        hash2 = hash_password(password)

        assert isinstance(hash1, str)
        assert hash1 != password
        assert hash1 != hash2

    def test_verify_password_correct(self):
        hashed = hash_password("testpassword123")

        assert verify_password("testpassword123", hashed) is True

    def test_verify_password_incorrect(self):
        hashed = hash_password("testpassword123")

        assert verify_password("wrongpassword", hashed) is False
        assert verify_password("", hashed) is False

    def test_verify_password_invalid_hash(self):
        assert verify_password("testpassword123", "invalid_hash") is False


class TestAccessToken:
    """Test access token generation."""

    def test_access_token_contains_correct_claims(self):
        user_id = uuid4()
        workspace_id = uuid4()

        token = create_access_token(user_id=user_id, workspace_id=workspace_id, email="test@example.com")
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

        assert payload["sub"] == str(user_id)
        assert payload["email"] == "test@example.com"
        assert payload["workspace_id"] == str(workspace_id)
        assert payload["type"] == "access"
        UUID(payload["jti"])

    def test_access_token_custom_expiration(self):
        token = create_access_token(
            user_id=uuid4(), workspace_id=uuid4(), email="test@example.com", expires_delta=timedelta(minutes=60)
        )
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

        assert payload["exp"] - payload["iat"] == 3600

    def test_identical_payloads_produce_distinct_tokens(self):
        """Tokens created within the same second differ by their jti claim."""
        user_id = uuid4()
        workspace_id = uuid4()

        token1 = create_access_token(user_id=user_id, workspace_id=workspace_id, email="test@example.com")
        token2 = create_access_token(user_id=user_id, workspace_id=workspace_id, email="test@example.com")

        assert token1 != token2


class TestRefreshToken:
    def test_refresh_token_has_minimal_claims(self):
        user_id = uuid4()

        token = create_refresh_token(user_id=user_id)
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

        assert payload["sub"] == str(user_id)
        assert payload["type"] == "refresh"
        assert "email" not in payload
        assert "workspace_id" not in payload

    def test_refresh_token_custom_expiration(self):
        token = create_refresh_token(user_id=uuid4(), expires_delta=timedelta(days=14))
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

        assert payload["exp"] - payload["iat"] == 14 * 24 * 60 * 60


class TestTokenVerification:
    """Test token verification."""

    def test_verify_access_token_success(self):
        user_id = uuid4()
        token = create_access_token(user_id=user_id, workspace_id=uuid4(), email="test@example.com")

        payload = verify_token(token, token_type="access")

        assert payload["sub"] == str(user_id)

    def test_verify_token_wrong_type(self):
        token = create_refresh_token(user_id=uuid4())

        with pytest.raises(ValueError, match="Invalid token type"):
            verify_token(token, token_type="access")

    def test_verify_token_invalid_signature(self):
        token = jwt.encode({"sub": str(uuid4()), "type": "access"}, "wrong_secret_key", algorithm="HS256")

        with pytest.raises(JWTError):
            verify_token(token, token_type="access")

    def test_verify_expired_token(self):
        token = create_access_token(
            user_id=uuid4(), workspace_id=uuid4(), email="test@example.com", expires_delta=timedelta(seconds=-1)
        )

        with pytest.raises(JWTError):
            verify_token(token, token_type="access")

    def test_verify_token_malformed(self):
        with pytest.raises(JWTError):
            verify_token("not.a.valid.token", token_type="access")


class TestSessionToken:
    def test_session_tokens_are_unique_and_url_safe(self):
        tokens = {generate_session_token() for _ in range(20)}

        assert len(tokens) == 20
        for token in tokens:
            assert len(token) >= 48
            assert all(c.isalnum() or c in "-_" for c in token)


class TestHubspotSignature:
    """Test webhook signature verification."""

    def test_valid_signature(self):
        body = b'[{"objectId": 1}]'
        signature = compute_hubspot_signature("secret", body)

        assert verify_hubspot_signature("secret", body, signature) is True

    def test_tampered_body_rejected(self):
        signature = compute_hubspot_signature("secret", b'[{"objectId": 1}]')

        assert verify_hubspot_signature("secret", b'[{"objectId": 2}]', signature) is False

    def test_wrong_secret_rejected(self):
        body = b"[]"
        signature = compute_hubspot_signature("other", body)

        assert verify_hubspot_signature("secret", body, signature) is False

    def test_missing_signature_rejected(self):
        assert verify_hubspot_signature("secret", b"[]", None) is False
        assert verify_hubspot_signature("secret", b"[]", "") is False

    def test_unset_secret_rejects_everything(self):
        body = b'[{"objectId": 1}]'
        signature = compute_hubspot_signature("", body)

        assert verify_hubspot_signature("", body, signature) is False
