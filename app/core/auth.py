# core/auth.py
"""
Shared-secret authentication.

Callers present the secret in a designated header (AUTH_HEADER). The gateway
fails closed: with no secret configured every request is rejected.
"""

import secrets
from typing import Mapping, Optional

from fastapi import Depends, Request

from core.config import Settings, get_settings
from core.exceptions import UnauthorizedError
from core.logger import logger


def is_authorized(presented: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare the presented credential with the configured secret.

    Args:
        presented: Value read from the request header, if any
        expected: Configured secret, if any

    Returns:
        bool: True only when a secret is configured and the values match
    """
    if not expected:
        return False
    if presented is None:
        return False
    return secrets.compare_digest(
        presented.encode("utf-8"),
        expected.encode("utf-8")
    )


def read_credential(headers: Mapping[str, str], header_name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain mappings and Starlette Headers."""
    value = headers.get(header_name)
    if value is not None:
        return value
    wanted = header_name.lower()
    for name, candidate in headers.items():
        if name.lower() == wanted:
            return candidate
    return None


async def verify_shared_secret(
    request: Request,
    settings: Settings = Depends(get_settings)
) -> None:
    """
    Dependency guarding the read-only routes.

    Raises:
        UnauthorizedError: If the header is missing or does not match
    """
    presented = request.headers.get(settings.AUTH_HEADER)
    if not is_authorized(presented, settings.ENQUEUE_SHARED_SECRET):
        logger.warning(
            "Authentication failed",
            extra={
                "path": request.url.path,
                "auth_result": "missing" if presented is None else "mismatch"
            }
        )
        raise UnauthorizedError("Unauthorized")
