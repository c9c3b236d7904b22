"""Helper methods for authentication."""

import logging

from authlib.common.errors import AuthlibBaseError
from authlib.jose import JsonWebToken
from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from paintbar.config import AuthOptions, get_settings
from paintbar.models import User

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="Bearer token")

owner_header_scheme = APIKeyHeader(name="X-Owner-Id", scheme_name="Owner header (no_auth only)", auto_error=False)

hs256_jwt = JsonWebToken(algorithms=["HS256"])


class InvalidToken(ValueError):
    pass


async def verify_token(token: str) -> dict:
    """
    Verifies the given token and returns the payload

    raises a InvalidToken exception if the token could not be validated
    """
    settings = get_settings()
    if not settings.jwt_secret:
        raise InvalidToken("No jwt_secret configured, cannot verify tokens")
    options: dict = {
        "sub": {"essential": True},
        "exp": {"essential": True},
        "aud": {"essential": True, "value": settings.host},
    }
    try:
        claims = hs256_jwt.decode(token, settings.jwt_secret, claims_options=options)
        claims.validate()
    except AuthlibBaseError as e:
        raise InvalidToken(e) from e
    if not isinstance(claims["sub"], str) or not claims["sub"]:
        raise InvalidToken("Invalid token, subject must be a non-empty string")
    return dict(claims)


async def authenticated_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    owner_header: str | None = Security(owner_header_scheme),
) -> User:
    """
    Authenticates the caller based on the bearer token. The owner id of the user is the subject of the token.
    If authentication is disabled, the owner id can be given in the X-Owner-Id header instead.
    """
    settings = get_settings()

    if bearer is not None:
        try:
            t = await verify_token(bearer.credentials)
        except InvalidToken as e:
            logging.warning("Token login failed: " + str(e))
            raise HTTPException(status_code=401, detail="Invalid bearer token: " + str(e)) from e
        return User(owner_id=t["sub"])

    if settings.auth == AuthOptions.no_auth:
        if not owner_header:
            raise HTTPException(status_code=401, detail="Authentication is disabled, but no X-Owner-Id header was given")
        return User(owner_id=owner_header)

    raise HTTPException(
        status_code=401,
        detail="This instance requires authentication. Please provide a valid bearer token",
        headers={"WWW-Authenticate": "Bearer"},
    )
