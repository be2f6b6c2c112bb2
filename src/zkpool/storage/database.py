"""SQLAlchemy persistence for the leaf cache and the wallet's own notes.

Private notes are stored only in encrypted form; nothing here holds a secret,
a nullifier or a plaintext amount.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, LargeBinary, String, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from zkpool.chain.interface import NewAccountEvent
from zkpool.utils.encoding import bytes_to_int, int_to_bytes
from zkpool.exceptions import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()


class CachedLeaf(Base):
    """One NewAccount event, keyed by leaf index."""
    __tablename__ = "leaves"

    leaf_index = Column(Integer, primary_key=True, autoincrement=False)
    commitment = Column(LargeBinary(32), nullable=False, index=True)
    nullifier_hash = Column(LargeBinary(32), nullable=False, index=True)
    encrypted_account = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_event(self) -> NewAccountEvent:
        return NewAccountEvent(
            index=self.leaf_index,
            commitment=bytes_to_int(self.commitment),
            nullifier_hash=bytes_to_int(self.nullifier_hash),
            encrypted_account=self.encrypted_account,
        )

    def __repr__(self) -> str:
        return f"<CachedLeaf(index={self.leaf_index} {self.commitment.hex()[:8]}...)>"


class StoredAccount(Base):
    """A note this wallet owns, kept as its encrypted blob."""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    commitment = Column(String(66), unique=True, nullable=False, index=True)
    nullifier_hash = Column(String(66), unique=True, nullable=False, index=True)
    leaf_index = Column(Integer, nullable=True)
    encrypted_blob = Column(LargeBinary, nullable=False)
    spent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    spent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        status = "spent" if self.spent else "unspent"
        return f"<StoredAccount({self.commitment[:10]}... {status})>"


class DatabaseManager:
    """Manages SQLAlchemy database connections and sessions."""

    def __init__(self, database_url: str = "sqlite:///zkpool.db"):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy database URL
                         Default: SQLite in current directory
                         In-memory example: "sqlite://"
        """
        self.database_url = database_url
        self.engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False} if "sqlite" in database_url else {}
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables in database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (for testing)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # Leaf cache
    def save_events(self, events: Iterable[NewAccountEvent]) -> int:
        """
        Persist synced events; indices already cached are left as they are.

        Raises:
            StorageError: If the write fails
        """
        saved = 0
        with self.get_session() as session:
            try:
                for event in events:
                    if session.get(CachedLeaf, event.index) is not None:
                        continue
                    session.add(CachedLeaf(
                        leaf_index=event.index,
                        commitment=int_to_bytes(event.commitment, 32),
                        nullifier_hash=int_to_bytes(event.nullifier_hash, 32),
                        encrypted_account=event.encrypted_account,
                    ))
                    saved += 1
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to cache leaves: {e}") from e
        logger.debug("Cached %d leaves", saved)
        return saved

    def load_events(self) -> List[NewAccountEvent]:
        """Cached events in index order."""
        with self.get_session() as session:
            try:
                leaves = session.query(CachedLeaf).order_by(CachedLeaf.leaf_index).all()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to load leaves: {e}") from e
            return [leaf.to_event() for leaf in leaves]

    def leaf_count(self) -> int:
        with self.get_session() as session:
            return session.query(CachedLeaf).count()

    # Own notes
    def save_account(
        self,
        commitment: int,
        nullifier_hash: int,
        encrypted_blob: bytes,
        leaf_index: Optional[int] = None,
    ) -> StoredAccount:
        """
        Record a note this wallet owns (idempotent on commitment).

        Raises:
            StorageError: If the write fails
        """
        key = hex(commitment)
        with self.get_session() as session:
            try:
                stored = session.query(StoredAccount).filter_by(commitment=key).first()
                if stored is None:
                    stored = StoredAccount(
                        commitment=key,
                        nullifier_hash=hex(nullifier_hash),
                        encrypted_blob=encrypted_blob,
                        leaf_index=leaf_index,
                    )
                    session.add(stored)
                elif leaf_index is not None:
                    stored.leaf_index = leaf_index
                session.commit()
                return stored
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to save account: {e}") from e

    def mark_spent(self, nullifier_hash: int) -> bool:
        """Mark the note with this nullifier hash as spent; False if unknown."""
        with self.get_session() as session:
            try:
                stored = session.query(StoredAccount).filter_by(
                    nullifier_hash=hex(nullifier_hash)
                ).first()
                if stored is None:
                    return False
                if not stored.spent:
                    stored.spent = True
                    stored.spent_at = datetime.utcnow()
                    session.commit()
                return True
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to mark account spent: {e}") from e

    def unspent_accounts(self) -> List[StoredAccount]:
        """Owned notes not yet spent, oldest first."""
        with self.get_session() as session:
            return (
                session.query(StoredAccount)
                .filter_by(spent=False)
                .order_by(StoredAccount.id)
                .all()
            )
