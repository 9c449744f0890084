"""
Bearer-token authentication.

Tokens are issued by an external identity provider. They are verified
against the provider's JWKS when ``jwks_url`` is configured, otherwise
against the shared ``jwt_secret_key`` (development and tests).
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient, PyJWKClientConnectionError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from typing_extensions import Annotated

from taskboard.core.config import Settings, SettingsDep
from taskboard.core.exceptions import UnauthenticatedException

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    is_admin: bool = False
    groups: tuple[str, ...] = ()


@lru_cache
def _jwk_client(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url, cache_keys=True)


async def _signing_key(token: str, settings: Settings):
    if not settings.jwks_url:
        return settings.jwt_secret_key

    client = _jwk_client(settings.jwks_url)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.jwks_retry_attempts),
        wait=wait_exponential(multiplier=0.5, max=8),
        retry=retry_if_exception_type(PyJWKClientConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    # PyJWKClient fetches over blocking urllib
    signing_key = await retrying(asyncio.to_thread, client.get_signing_key_from_jwt, token)
    return signing_key.key


def _groups(claims: dict, claim: str) -> tuple[str, ...]:
    value = claims.get(claim) or ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(group) for group in value)


async def decode_access_token(token: str, settings: Settings) -> CurrentUser:
    """Verify a token and turn its claims into the acting user."""
    try:
        key = await _signing_key(token, settings)
        algorithms = ["RS256"] if settings.jwks_url else [settings.jwt_algorithm]
        claims = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={
                "require": ["sub"],
                "verify_aud": settings.jwt_audience is not None,
            },
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Rejected expired token")
        raise UnauthenticatedException("Token has expired.")
    except jwt.PyJWTError as e:
        # Covers invalid tokens and JWKS failures that survived the retries
        logger.warning("Rejected token: %s", e)
        raise UnauthenticatedException("Invalid authentication token.")

    groups = _groups(claims, settings.groups_claim)
    return CurrentUser(
        id=str(claims["sub"]),
        is_admin=settings.admin_group in groups,
        groups=groups,
    )


async def get_current_user(
    settings: SettingsDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedException("Missing bearer token.")
    user = await decode_access_token(credentials.credentials, settings)
    logger.debug("Authenticated %s (admin=%s)", user.id, user.is_admin)
    return user


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
