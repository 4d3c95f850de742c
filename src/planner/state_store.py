"""
Durable per-user state store.

Maps a user key to exactly one UserState, stored as a single JSON blob per key
(table ``user_states``). The first read for an unknown key creates and persists
an empty state.

Concurrency:
- Mutations of one key are linearized by a per-key re-entrant lock; callers hold
  it for the whole load -> mutate -> persist sequence (see ``transaction``).
- Different keys use different locks and never wait on each other.
- Reads are a single SELECT of a whole committed blob, so they never observe a
  partially written state and do not need the lock.
- The lock only covers this process. Writes from ``transaction`` are a
  compare-and-swap on the row version, so a write from another process (the CLI
  next to a running server) between load and persist raises StateConflict
  instead of being overwritten. Lazy creation tolerates a duplicate-key insert
  from another writer and reads its row back.
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.database import get_engine, get_session_factory, init_db, session_scope
from src.db.models import UserStateRecord

from .errors import StateConflict, StorageFailure
from .models import UserState


class StateStore:
    """
    SQLAlchemy-backed store of one UserState per user key.

    Handles:
    - Lazy creation of empty state on first access
    - Whole-state replacement with a version counter
    - Per-key mutual exclusion for read-modify-write sequences
    """

    def __init__(self, engine: Engine | None = None):
        """
        Initialize the state store.

        Args:
            engine: Custom engine (defaults to the configured database_url)
        """
        self.engine = engine or get_engine()
        self._session_factory = get_session_factory(engine)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

        try:
            init_db(self.engine)
        except SQLAlchemyError as e:
            raise StorageFailure(f"State store unavailable: {e}") from e

        logger.info(f"StateStore initialized on {self.engine.url.render_as_string(hide_password=True)}")

    # =========================================================================
    # Locking
    # =========================================================================

    def lock(self, user_key: str) -> threading.RLock:
        """Get the lock serializing mutations for ``user_key``."""
        with self._locks_guard:
            lock = self._locks.get(user_key)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_key] = lock
            return lock

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"State store operation failed: {e}")
            raise StorageFailure(f"State store unavailable: {e}") from e

    # =========================================================================
    # State Operations
    # =========================================================================

    def _load_record(self, user_key: str) -> tuple[str, int] | None:
        with self._session() as session:
            record = session.get(UserStateRecord, user_key)
            if record is None:
                return None
            return record.payload, record.version

    def _decode(self, user_key: str, payload: str) -> UserState:
        try:
            return UserState.model_validate_json(payload)
        except PydanticValidationError as e:
            logger.error(f"Stored state for {user_key} is unreadable: {e}")
            raise StorageFailure(f"Stored state for {user_key} is unreadable") from e

    def _insert(self, user_key: str, payload: str) -> bool:
        """Insert the first row for a key. False if another writer inserted it first."""
        try:
            with self._session() as session:
                session.add(UserStateRecord(user_id=user_key, payload=payload, version=1))
        except IntegrityError:
            return False
        return True

    def _update(self, user_key: str, payload: str, expected_version: int | None = None) -> int | None:
        """
        Overwrite the row for a key and bump its version in one statement.

        With ``expected_version`` the write only happens if the stored version
        still matches (compare-and-swap).

        Returns:
            The new version, or None if no row matched
        """
        stmt = update(UserStateRecord).where(UserStateRecord.user_id == user_key)
        if expected_version is not None:
            stmt = stmt.where(UserStateRecord.version == expected_version)
        stmt = stmt.values(
            payload=payload, version=UserStateRecord.version + 1, updated_at=func.now()
        ).execution_options(synchronize_session=False)

        with self._session() as session:
            if session.execute(stmt).rowcount == 0:
                return None
            return session.execute(
                select(UserStateRecord.version).where(UserStateRecord.user_id == user_key)
            ).scalar_one()

    def load(self, user_key: str) -> tuple[UserState, int]:
        """
        Get the state for a user key together with its stored version.

        A key seen for the first time gets an empty state, persisted as version 1.
        If another writer creates the row first, its row is read back instead.

        Raises:
            StorageFailure: If the database is unavailable
        """
        loaded = self._load_record(user_key)
        if loaded is not None:
            return self._decode(user_key, loaded[0]), loaded[1]

        with self.lock(user_key):
            loaded = self._load_record(user_key)
            if loaded is None:
                state = UserState.empty(user_key)
                if self._insert(user_key, state.model_dump_json(by_alias=True)):
                    logger.info(f"Created empty state for user {user_key}")
                    return state, 1
                loaded = self._load_record(user_key)

        if loaded is None:
            raise StorageFailure(f"State for {user_key} vanished during creation")
        return self._decode(user_key, loaded[0]), loaded[1]

    def get_state(self, user_key: str) -> UserState:
        """
        Get the state for a user key, creating an empty one if none exists.

        Each call returns a fresh copy; changing it has no effect until
        ``set_state`` is called.

        Raises:
            StorageFailure: If the database is unavailable
        """
        return self.load(user_key)[0]

    def set_state(self, user_key: str, state: UserState, expected_version: int | None = None) -> int:
        """
        Persist a full replacement of the state for ``user_key``.

        Once this returns, every later ``get_state`` for the key sees the new value.

        Args:
            user_key: User key
            state: Replacement state
            expected_version: Only write if the stored version is still this one

        Returns:
            The new version number

        Raises:
            StateConflict: If ``expected_version`` no longer matches
            StorageFailure: If the write could not be committed
        """
        payload = state.model_dump_json(by_alias=True)

        if expected_version is not None:
            version = self._update(user_key, payload, expected_version)
            if version is None:
                logger.warning(f"Write conflict for {user_key}: version {expected_version} is stale")
                raise StateConflict(user_key, expected_version)
        else:
            version = self._update(user_key, payload)
            if version is None:
                version = 1 if self._insert(user_key, payload) else self._update(user_key, payload)

        logger.debug(f"Persisted state for {user_key} (version {version})")
        return version

    def get_version(self, user_key: str) -> int | None:
        """Current version for a key, or None if it was never stored."""
        loaded = self._load_record(user_key)
        return loaded[1] if loaded else None

    @contextmanager
    def transaction(self, user_key: str) -> Generator[UserState, None, None]:
        """
        Load, mutate and persist one user's state under the key's lock.

        The state is written back only if the block finishes without raising,
        so a failed operation leaves the stored state untouched. The write is
        conditional on the version that was loaded: if another process wrote
        the key in between, nothing is written and StateConflict is raised.

        Example:
            with store.transaction("alice") as state:
                state.goals.append(goal)
        """
        with self.lock(user_key):
            state, version = self.load(user_key)
            yield state
            self.set_state(user_key, state, expected_version=version)
