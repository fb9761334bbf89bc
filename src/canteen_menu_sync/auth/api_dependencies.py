"""FastAPI dependencies for API authentication.

Resolves the caller's role from the X-API-Key header before any mutation
reaches the inventory service.
"""

from typing import Annotated

from fastapi import Header, HTTPException

from canteen_menu_sync.auth.api_key_validator import APIKeyValidator


def get_role_from_header(
    x_api_key: Annotated[str | None, Header()] = None,
    validator: APIKeyValidator | None = None,
) -> str:
    """Extract the API key from the X-API-Key header and resolve its role.

    Args:
        x_api_key: API key from X-API-Key header (injected by FastAPI)
        validator: APIKeyValidator instance

    Returns:
        str: The caller's role

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing API key")

    role = validator.validate(x_api_key) if validator else None
    if role is None:
        raise HTTPException(status_code=401, detail="Invalid API key")

    return role


def require_mutating_role(role: str) -> str:
    """Reject callers whose role may not change menu state.

    Raises:
        HTTPException: 403 if the role is read-only
    """
    if not APIKeyValidator.can_mutate(role):
        raise HTTPException(status_code=403, detail=f"Role '{role}' may not modify the menu")
    return role
