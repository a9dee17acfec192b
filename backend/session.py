"""Explicit user session: who is signed in and the family tree they are editing.

Authentication itself is mocked; what matters is that the tree store is
created on login and its cached graph is dropped on logout.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from storage import PersonStorage, StorageError
from tree_store import FamilyTreeStore

logger = logging.getLogger("familytree.session")


@dataclass
class User:
    id: str
    name: str
    email: str
    photo_url: str


@dataclass
class UserSession:
    user: User
    store: FamilyTreeStore


class SessionManager:
    """Creates and tears down the single interactive session."""

    def __init__(
        self,
        storage_factory: Callable[[User], PersonStorage],
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
    ):
        self._storage_factory = storage_factory
        self._retry_attempts = retry_attempts
        self._retry_backoff = retry_backoff
        self._current: UserSession | None = None

    @property
    def current(self) -> UserSession | None:
        return self._current

    async def login(self, name: str, email: str) -> UserSession:
        """Sign in (replacing any existing session) and load the user's tree."""
        if self._current is not None:
            await self.logout()

        user = User(
            id=f"usr_{uuid.uuid5(uuid.NAMESPACE_URL, email.lower()).hex[:12]}",
            name=name,
            email=email,
            photo_url=f"https://api.dicebear.com/7.x/avataaars/svg?seed={name.split()[0] if name.split() else 'user'}",
        )
        store = FamilyTreeStore(
            self._storage_factory(user),
            retry_attempts=self._retry_attempts,
            retry_backoff=self._retry_backoff,
        )
        try:
            await store.load()
        except StorageError:
            await store.close()
            raise
        self._current = UserSession(user=user, store=store)
        logger.info(f"User {user.email} logged in")
        return self._current

    async def logout(self) -> None:
        """Finish pending saves, drop the cached tree and end the session."""
        session = self._current
        if session is None:
            return
        await session.store.close()
        self._current = None
        logger.info(f"User {session.user.email} logged out")
