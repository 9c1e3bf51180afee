from typing import Optional, TypedDict


class UserProfile(TypedDict):
    """Display projection of a user owned by the identity service."""

    id: str
    name: Optional[str]
    email: Optional[str]
    avatar: Optional[str]
