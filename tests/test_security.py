"""
Tests for bearer-token verification
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.security import HTTPAuthorizationCredentials
from jwt import PyJWKClientConnectionError

from taskboard.core.config import Settings
from taskboard.core.exceptions import UnauthenticatedException
from taskboard.core.security import decode_access_token, get_current_user


class TestSharedSecret:
    """Test HS256 tokens verified against the configured secret"""

    @pytest.mark.asyncio
    async def test_regular_user(self, settings, make_token):
        user = await decode_access_token(make_token(sub="user1"), settings)
        assert user.id == "user1"
        assert user.is_admin is False
        assert user.groups == ()

    @pytest.mark.asyncio
    async def test_admin_group_list(self, settings, make_token):
        user = await decode_access_token(make_token(groups=["Staff", "Admin"]), settings)
        assert user.is_admin is True
        assert user.groups == ("Staff", "Admin")

    @pytest.mark.asyncio
    async def test_admin_group_as_string(self, settings, make_token):
        user = await decode_access_token(make_token(groups="Admin"), settings)
        assert user.is_admin is True

    @pytest.mark.asyncio
    async def test_group_names_are_case_sensitive(self, settings, make_token):
        user = await decode_access_token(make_token(groups=["admin"]), settings)
        assert user.is_admin is False

    @pytest.mark.asyncio
    async def test_expired_token(self, settings, make_token):
        token = make_token(expires_in=timedelta(minutes=-5))
        with pytest.raises(UnauthenticatedException) as exc_info:
            await decode_access_token(token, settings)
        assert exc_info.value.message == "Token has expired."

    @pytest.mark.parametrize(
        "token_options",
        [
            {"sub": None},
            {"secret": "another-secret-key-that-is-long-enough-for-hs256"},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_tokens(self, settings, make_token, token_options):
        with pytest.raises(UnauthenticatedException) as exc_info:
            await decode_access_token(make_token(**token_options), settings)
        assert exc_info.value.message == "Invalid authentication token."

    @pytest.mark.asyncio
    async def test_garbage_token(self, settings):
        with pytest.raises(UnauthenticatedException):
            await decode_access_token("not.a.jwt", settings)

    @pytest.mark.asyncio
    async def test_audience_is_checked_when_configured(self, settings, make_token):
        settings = settings.model_copy(update={"jwt_audience": "taskboard"})
        with pytest.raises(UnauthenticatedException):
            await decode_access_token(make_token(), settings)


class TestCurrentUserDependency:
    """Test the FastAPI dependency wrapper"""

    @pytest.mark.asyncio
    async def test_missing_credentials(self, settings):
        with pytest.raises(UnauthenticatedException) as exc_info:
            await get_current_user(settings, None)
        assert exc_info.value.message == "Missing bearer token."

    @pytest.mark.asyncio
    async def test_bearer_credentials(self, settings, make_token):
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=make_token("u7"))
        user = await get_current_user(settings, credentials)
        assert user.id == "u7"


class TestJwks:
    """Test RS256 tokens verified against a provider key set"""

    @pytest.fixture
    def rsa_key(self):
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)

    @pytest.fixture
    def jwks_settings(self):
        return Settings(
            jwks_url="https://idp.example.com/.well-known/jwks.json", jwks_retry_attempts=2
        )

    def rs256_token(self, private_key, sub="user1"):
        return jwt.encode(
            {"sub": sub, "cognito:groups": ["Admin"]},
            private_key,
            algorithm="RS256",
            headers={"kid": "test-key"},
        )

    @pytest.mark.asyncio
    async def test_key_fetch_is_retried(self, rsa_key, jwks_settings):
        client = MagicMock()
        client.get_signing_key_from_jwt.side_effect = [
            PyJWKClientConnectionError("provider unreachable"),
            SimpleNamespace(key=rsa_key.public_key()),
        ]

        with patch("taskboard.core.security._jwk_client", return_value=client):
            user = await decode_access_token(self.rs256_token(rsa_key), jwks_settings)

        assert user.id == "user1"
        assert user.is_admin is True
        assert client.get_signing_key_from_jwt.call_count == 2

    @pytest.mark.asyncio
    async def test_unreachable_provider_rejects_token(self, rsa_key):
        settings = Settings(jwks_url="https://idp.example.com/jwks", jwks_retry_attempts=1)
        client = MagicMock()
        client.get_signing_key_from_jwt.side_effect = PyJWKClientConnectionError("down")

        with patch("taskboard.core.security._jwk_client", return_value=client):
            with pytest.raises(UnauthenticatedException):
                await decode_access_token(self.rs256_token(rsa_key), settings)

    @pytest.mark.asyncio
    async def test_hs256_token_is_refused_with_jwks(self, rsa_key, jwks_settings, make_token):
        client = MagicMock()
        client.get_signing_key_from_jwt.return_value = SimpleNamespace(key=rsa_key.public_key())

        with patch("taskboard.core.security._jwk_client", return_value=client):
            with pytest.raises(UnauthenticatedException):
                await decode_access_token(make_token(), jwks_settings)
