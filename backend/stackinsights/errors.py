from __future__ import annotations


class PersonalizationError(Exception):
    pass


class InvalidUserError(PersonalizationError, ValueError):
    """Raised when an operation is called without a usable user id."""


def require_user_id(user_id: object) -> str:
    # Every persisted record is keyed by the id, so an empty one is never a no-op.
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidUserError("user_id must be a non-empty string")
    return user_id
