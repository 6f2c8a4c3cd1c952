import base64
import binascii
import secrets
from typing import Optional


class AuthError(Exception):
    """Credential check failed. The reason is for logs, never for the client."""


def check_basic_auth(header: Optional[str], username: str, password: str) -> None:
    """Validate an ``Authorization`` header against the configured credential pair.

    Args:
        header: Raw value of the Authorization header, or None if absent
        username: Expected user name
        password: Expected password

    Raises:
        AuthError: If the header is missing, malformed or does not match
    """
    if not header:
        raise AuthError("authorization header is missing")

    scheme, sep, encoded = header.partition(" ")
    if not sep or scheme != "Basic":
        raise AuthError("invalid authorization type")

    try:
        decoded = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthError(f"failed to decode basic auth info: {e}") from e

    given_user, sep, given_password = decoded.partition(b":")
    if not sep:
        raise AuthError("malformed basic auth credentials")

    # Compare both fields so timing does not reveal which one differs
    user_ok = secrets.compare_digest(given_user, username.encode("utf-8"))
    password_ok = secrets.compare_digest(given_password, password.encode("utf-8"))
    if not (user_ok and password_ok):
        raise AuthError("invalid credentials")
