"""DB models and helpers for Budget Bridge."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from budget_bridge.core.models import AuthSession, SyncSession, SyncSessionStatus

Base = declarative_base()


class RuleRecord(Base):
    """A stored categorization rule."""

    __tablename__ = "rules"
    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    pattern = Column(String(500), nullable=False)
    pattern_type = Column(String(16), nullable=False)
    target_field = Column(String(16), nullable=False)
    category_id = Column(String, nullable=False)
    category_name = Column(String, nullable=False, default="")
    payee_override = Column(String(200), nullable=True)
    priority = Column(Integer, nullable=False, index=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class SyncSessionRecord(Base):
    """A sync session, written at every status transition."""

    __tablename__ = "sync_sessions"
    id = Column(String(36), primary_key=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(32), nullable=False)
    failure_reason = Column(Text, nullable=True)
    transaction_count = Column(Integer, nullable=False, default=0)
    imported_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)


class AuthSessionRecord(Base):
    """The single bank auth session, kept so a confirmation can resume in another process."""

    __tablename__ = "auth_sessions"
    id = Column(Integer, primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


AUTH_SESSION_ROW_ID = 1


def get_engine(url: str) -> Engine:
    """Create a SQLAlchemy engine; in-memory SQLite shares one connection across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


class DBHelper:
    """Persistence for sync history and the auth session."""

    def __init__(self, session_factory: sessionmaker) -> None:
        """Initialize the DBHelper with a SQLAlchemy session factory."""
        self.session_factory = session_factory

    def save_sync_session(self, sync_session: SyncSession) -> None:
        """Insert or update a sync session row."""
        with self.session_factory() as session:
            record = session.get(SyncSessionRecord, str(sync_session.id))
            if record is None:
                record = SyncSessionRecord(id=str(sync_session.id))
                session.add(record)
            record.started_at = sync_session.started_at
            record.completed_at = sync_session.completed_at
            record.status = sync_session.status.value
            record.failure_reason = sync_session.failure_reason
            record.transaction_count = sync_session.transaction_count
            record.imported_count = sync_session.imported_count
            record.skipped_count = sync_session.skipped_count
            session.commit()

    def get_sync_history(self, limit: int = 20) -> list[SyncSession]:
        """Return the most recent sync sessions, newest first."""
        with self.session_factory() as session:
            stmt = select(SyncSessionRecord).order_by(SyncSessionRecord.started_at.desc()).limit(limit)
            return [_to_sync_session(r) for r in session.scalars(stmt)]

    def get_unfinished_sync_sessions(self) -> list[SyncSession]:
        """Return the sync sessions that never reached a terminal status, newest first."""
        terminal = [SyncSessionStatus.COMPLETED.value, SyncSessionStatus.FAILED.value]
        with self.session_factory() as session:
            stmt = (
                select(SyncSessionRecord)
                .where(SyncSessionRecord.status.not_in(terminal))
                .order_by(SyncSessionRecord.started_at.desc())
            )
            return [_to_sync_session(r) for r in session.scalars(stmt)]

    def save_auth_session(self, auth_session: AuthSession, now: datetime) -> None:
        """Store the auth session, replacing any previous one."""
        with self.session_factory() as session:
            record = session.get(AuthSessionRecord, AUTH_SESSION_ROW_ID)
            if record is None:
                record = AuthSessionRecord(id=AUTH_SESSION_ROW_ID)
                session.add(record)
            record.payload = auth_session.model_dump_json()
            record.updated_at = now
            session.commit()

    def load_auth_session(self) -> AuthSession | None:
        """Load the stored auth session, if any."""
        with self.session_factory() as session:
            record = session.get(AuthSessionRecord, AUTH_SESSION_ROW_ID)
            if record is None:
                return None
            return AuthSession.model_validate_json(record.payload)

    def delete_auth_session(self) -> None:
        """Remove the stored auth session; a no-op when none exists."""
        with self.session_factory() as session:
            session.execute(delete(AuthSessionRecord))
            session.commit()


def _to_sync_session(record: SyncSessionRecord) -> SyncSession:
    return SyncSession(
        id=record.id,
        started_at=record.started_at,
        completed_at=record.completed_at,
        status=SyncSessionStatus(record.status),
        failure_reason=record.failure_reason,
        transaction_count=record.transaction_count,
        imported_count=record.imported_count,
        skipped_count=record.skipped_count,
    )

