import os
import json
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from fashion_compare.exceptions import StorageReadFailure, StorageWriteFailure

logger = logging.getLogger('database')

load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///fashion_compare.db")

Base = declarative_base()


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<KeyValueEntry(key='{self.key}', updated_at='{self.updated_at}')>"


class KeyValueStorage(ABC):
    """Asynchronous host storage: whole values under string keys.

    ``get`` returns a mapping that contains ``key`` only when it is stored,
    ``set`` writes every item of a mapping, ``remove`` deletes a key.
    """

    @abstractmethod
    async def get(self, key: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def set(self, items: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass


class MemoryKeyValueStorage(KeyValueStorage):
    """In-process storage; values are copied through JSON like a real host would."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Dict[str, Any]:
        if key not in self._data:
            return {}
        return {key: json.loads(self._data[key])}

    async def set(self, items: Dict[str, Any]) -> None:
        try:
            encoded = {key: json.dumps(value) for key, value in items.items()}
        except (TypeError, ValueError) as e:
            raise StorageWriteFailure(f"Value is not serializable: {e}") from e
        self._data.update(encoded)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class SQLKeyValueStorage(KeyValueStorage):

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or DATABASE_URL
        logger.info(f"Using database: {self.database_url}")
        self.engine = create_engine(self.database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    async def get(self, key: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, items: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._set, items)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    def _get(self, key: str) -> Dict[str, Any]:
        try:
            with self.Session() as session:
                entry = session.get(KeyValueEntry, key)
                if entry is None:
                    return {}
                return {key: json.loads(entry.value)}
        except (SQLAlchemyError, ValueError) as e:
            raise StorageReadFailure(f"Could not read '{key}': {e}") from e

    def _set(self, items: Dict[str, Any]) -> None:
        try:
            with self.Session() as session:
                for key, value in items.items():
                    session.merge(KeyValueEntry(
                        key=key,
                        value=json.dumps(value),
                        updated_at=datetime.now(timezone.utc),
                    ))
                session.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise StorageWriteFailure(f"Could not write {list(items)}: {e}") from e

    def _remove(self, key: str) -> None:
        try:
            with self.Session() as session:
                entry = session.get(KeyValueEntry, key)
                if entry:
                    session.delete(entry)
                    session.commit()
        except SQLAlchemyError as e:
            raise StorageWriteFailure(f"Could not remove '{key}': {e}") from e

    def close(self):
        self.engine.dispose()
