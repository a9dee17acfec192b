"""Durable storage for person records.

Records are stored whole (as their JSON form) keyed by person id, with
insert-or-replace semantics: there is no separate create/update.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import Column, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from models import Person, TreeData
from seed_data import default_tree

logger = logging.getLogger("familytree.storage")

Base = declarative_base()


class StorageError(Exception):
    """Raised when the storage backend cannot be read or written."""


class PersonRecord(Base):
    """One stored person."""

    __tablename__ = "people"

    id = Column(String, primary_key=True)
    data = Column(Text, nullable=False)
    updated_at = Column(String, default=lambda: datetime.now(timezone.utc).isoformat())

    def __repr__(self) -> str:
        return f"<PersonRecord(id='{self.id}')>"


class MetaRecord(Base):
    """Tree-level settings such as the root person."""

    __tablename__ = "meta"

    key = Column(String, primary_key=True)
    value = Column(String)


class PersonStorage:
    """Contract for person persistence. Implementations must be safe to await
    from the event loop."""

    async def load_all(self) -> list[Person]:
        raise NotImplementedError

    async def put(self, person: Person) -> None:
        raise NotImplementedError

    async def load_root_id(self) -> str | None:
        raise NotImplementedError

    async def put_root_id(self, root_id: str | None) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the backend."""

    async def seed(self) -> TreeData:
        """Write the default family and return it."""
        tree = default_tree()
        logger.info(f"Seeding storage with {len(tree.people)} default people")
        for person in tree.people.values():
            await self.put(person)
        await self.put_root_id(tree.root_id)
        return tree


class SqlitePersonStorage(PersonStorage):
    """SQLite-backed person storage."""

    def __init__(self, db_path: Path | None = None):
        """
        Args:
            db_path: Path to SQLite database file (default: ./familytree.db)
        """
        self.db_path = db_path or Path("./familytree.db")
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
        )
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        self.Session = sessionmaker(bind=self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.Session()

    async def load_all(self) -> list[Person]:
        return await asyncio.to_thread(self._load_all)

    async def put(self, person: Person) -> None:
        await asyncio.to_thread(self._put, person)

    async def load_root_id(self) -> str | None:
        return await asyncio.to_thread(self._load_root_id)

    async def put_root_id(self, root_id: str | None) -> None:
        await asyncio.to_thread(self._put_root_id, root_id)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
        logger.debug(f"Closed database {self.db_path}")

    def _load_all(self) -> list[Person]:
        session = self.get_session()
        try:
            rows = session.query(PersonRecord).order_by(PersonRecord.id).all()
            people = []
            for row in rows:
                try:
                    people.append(Person.model_validate_json(row.data))
                except ValidationError as e:
                    raise StorageError(f"Stored record {row.id} is corrupt: {e}") from e
            logger.debug(f"Loaded {len(people)} people from {self.db_path}")
            return people
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load people from {self.db_path}: {e}") from e
        finally:
            session.close()

    def _put(self, person: Person) -> None:
        session = self.get_session()
        try:
            session.merge(
                PersonRecord(
                    id=person.id,
                    data=person.model_dump_json(by_alias=True),
                    updated_at=datetime.now(timezone.utc).isoformat(),
                )
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Failed to save person {person.id}: {e}") from e
        finally:
            session.close()

    def _load_root_id(self) -> str | None:
        session = self.get_session()
        try:
            row = session.get(MetaRecord, "root_id")
            return row.value if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load root id: {e}") from e
        finally:
            session.close()

    def _put_root_id(self, root_id: str | None) -> None:
        session = self.get_session()
        try:
            session.merge(MetaRecord(key="root_id", value=root_id))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Failed to save root id: {e}") from e
        finally:
            session.close()

    def _clear(self) -> None:
        session = self.get_session()
        try:
            session.query(PersonRecord).delete()
            session.query(MetaRecord).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Failed to clear storage: {e}") from e
        finally:
            session.close()
