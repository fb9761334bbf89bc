"""API key validation for admin endpoints.

Each configured key carries a role. Only roles in ``MUTATING_ROLES`` may call
the inventory mutation endpoints; other roles are read-only.
"""

DEFAULT_ROLE = "staff"
MUTATING_ROLES = frozenset({"staff", "admin"})


def parse_api_keys(raw: str) -> dict[str, str]:
    """Parse a comma separated list of ``key:role`` pairs.

    A pair without a role gets the default role.

    Args:
        raw: Value of the ADMIN_API_KEYS setting, e.g. "k1:admin,k2"

    Returns:
        dict: Mapping of API key to role
    """
    api_keys: dict[str, str] = {}
    for entry in raw.split(","):
        key, _, role = entry.strip().partition(":")
        key = key.strip()
        if key:
            api_keys[key] = role.strip() or DEFAULT_ROLE
    return api_keys


class APIKeyValidator:
    """Resolves API keys to caller roles."""

    def __init__(self, api_keys: dict[str, str]) -> None:
        """Initialize validator with a key to role mapping.

        Args:
            api_keys: Mapping of valid API keys to their roles

        Raises:
            ValueError: If api_keys is empty
        """
        if not api_keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = dict(api_keys)

    def validate(self, api_key: str) -> str | None:
        """Validate an API key.

        Args:
            api_key: The API key to validate

        Returns:
            The caller's role, or None if the key is unknown
        """
        return self.api_keys.get(api_key)

    @staticmethod
    def can_mutate(role: str) -> bool:
        """Whether a role may change menu state."""
        return role in MUTATING_ROLES
