"""Key builders for persisted auth state.

All keys share the `auth:` prefix so they can be listed or flushed together
without touching anything else stored in the same database.
"""

PREFIX = "auth"


def session_key(storage_key: str) -> str:
    """Current session JSON for one app installation / storage namespace."""
    return f"{PREFIX}:session:{storage_key}"
