"""In-memory family tree backed by durable person storage.

``FamilyTreeStore`` is the only place the graph changes. Each edit computes a
new graph value (see ``relationships.apply_person_update``) and swaps it in with
a single assignment, so readers never observe a half-applied edit. The edited
person's record is written before the call returns; records of relatives that
changed as a side effect are written in the background with retries.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from models import Person, TreeData
from relationships import apply_person_update, create_person
from seed_data import DEFAULT_ROOT_ID
from storage import PersonStorage, StorageError

logger = logging.getLogger("familytree.tree_store")


class TreeNotLoadedError(RuntimeError):
    """Raised when the graph is used before ``load()`` or after ``clear()``."""


class FamilyTreeStore:
    """Owns the family tree graph for one session."""

    def __init__(
        self,
        storage: PersonStorage,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
    ):
        self._storage = storage
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = retry_backoff
        self._tree: TreeData | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def tree(self) -> TreeData:
        if self._tree is None:
            raise TreeNotLoadedError("Family tree has not been loaded")
        return self._tree

    @property
    def is_loaded(self) -> bool:
        return self._tree is not None

    def get_person(self, person_id: str) -> Person | None:
        return self.tree.people.get(person_id)

    async def load(self) -> TreeData:
        """
        Load every stored person, seeding the default family if storage is empty.

        Raises:
            StorageError: storage could not be read (distinct from an empty store)
        """
        people = await self._storage.load_all()
        if not people:
            logger.info("Storage is empty, seeding default family")
            self._tree = await self._storage.seed()
            return self._tree

        people_by_id = {p.id: p for p in people}
        root_id = await self._storage.load_root_id()
        if root_id not in people_by_id:
            root_id = DEFAULT_ROOT_ID if DEFAULT_ROOT_ID in people_by_id else people[0].id

        self._tree = TreeData(people=people_by_id, root_id=root_id)
        logger.info(f"Loaded family tree with {len(people_by_id)} people (root={root_id})")
        return self._tree

    async def save_person(self, person: Person) -> TreeData:
        """
        Apply an edit (or creation) of one person and persist it.

        The primary record is written before returning. If that write fails the
        in-memory graph is restored and StorageError propagates. Relatives
        updated as a side effect are saved in the background.
        """
        before = self.tree
        previous = before.people.get(person.id)
        after, touched = apply_person_update(before, previous, person)
        self._tree = after

        action = "Updating" if previous else "Creating"
        logger.info(f"{action} person {person.id} ({person.full_name}), {len(touched)} relatives affected")

        try:
            # Root id first: a root pointing at a missing person is repaired on load
            if before.root_id != after.root_id:
                await self._storage.put_root_id(after.root_id)
            await self._storage.put(after.people[person.id])
        except StorageError:
            logger.error(f"Failed to save person {person.id}, reverting in-memory change")
            self._tree = before
            raise

        for relative_id in touched:
            self._dispatch_background_save(relative_id)

        return after

    async def add_person(self, partial: Mapping[str, Any] | None = None) -> Person:
        """Create a new person from partial data and store it."""
        person = create_person(partial)
        await self.save_person(person)
        return self.tree.people[person.id]

    async def replace_tree(self, tree: TreeData) -> TreeData:
        """Replace the whole graph (and storage contents), e.g. after an import."""
        await self.drain()
        await self._storage.clear()
        for person in tree.people.values():
            await self._storage.put(person)
        await self._storage.put_root_id(tree.root_id)
        self._tree = tree
        logger.info(f"Replaced family tree with {len(tree.people)} people")
        return tree

    async def drain(self) -> None:
        """Wait for every background save dispatched so far."""
        if self._pending:
            logger.debug(f"Waiting for {len(self._pending)} background saves")
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        """Forget the cached graph (storage is left as is)."""
        self._tree = None

    async def close(self) -> None:
        """Finish background saves, forget the graph and release storage."""
        await self.drain()
        self.clear()
        await self._storage.close()

    def _dispatch_background_save(self, person_id: str) -> None:
        task = asyncio.create_task(self._save_with_retry(person_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save_with_retry(self, person_id: str) -> None:
        for attempt in range(1, self._retry_attempts + 1):
            # Always write the latest version so a slow retry cannot overwrite a newer edit
            person = self._tree.people.get(person_id) if self._tree else None
            if person is None:
                logger.warning(f"Person {person_id} no longer in tree, dropping background save")
                return
            try:
                await self._storage.put(person)
                logger.debug(f"Saved relative {person_id} (attempt {attempt})")
                return
            except StorageError as e:
                if attempt == self._retry_attempts:
                    # Not rolled back: the edited person's record is already committed
                    logger.error(f"Giving up saving relative {person_id} after {attempt} attempts: {e}")
                    return
                delay = self._retry_backoff * (2 ** (attempt - 1))
                logger.warning(f"Saving relative {person_id} failed (attempt {attempt}), retrying in {delay}s: {e}")
                await asyncio.sleep(delay)
