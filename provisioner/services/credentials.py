"""
Random credential generation for the admin key and tenant passwords.

Everything here draws from the `secrets` module (OS CSPRNG).
"""

import secrets
import string

ADMIN_TOKEN_PREFIX = "sk_"

# No single quote or backslash: passwords are embedded as SQL string literals
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "@$-_."


def generate_admin_token(nbytes: int = 32) -> str:
    """
    Generate the process-wide admin key.

    Format: "sk_" + URL-safe base64 of `nbytes` random bytes.
    """
    if nbytes <= 0:
        raise ValueError("nbytes must be positive")
    return ADMIN_TOKEN_PREFIX + secrets.token_urlsafe(nbytes)


def generate_password(length: int = 32) -> str:
    """
    Generate a secure random password.
    """
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
