"""
Current User

Every backup, restore and policy decision is scoped to the signed-in
user. Services receive a CurrentUserProvider instead of reaching for a
global session, so tests and the UI can each supply their own.
"""

from abc import ABC, abstractmethod
from typing import Optional


class CurrentUserProvider(ABC):
    """Answers "who is signed in right now?"."""

    @abstractmethod
    def get_current_user_id(self) -> Optional[str]:
        """Return the signed-in user's id, or None when signed out."""
        pass


class SessionUserProvider(CurrentUserProvider):
    """Holds the signed-in user for one app session."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id

    def get_current_user_id(self) -> Optional[str]:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None
