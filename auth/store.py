"""
auth/store.py -- SQLAlchemy Core persistence for users, bans and the login log.

Pattern: Repository + Data Mapper. UserStore, BanStore and LoginLogStore are
the repositories; the _row_to_* functions are the mappers. The resolver only
sees the Protocols in core/interfaces.py and never touches SQL.

All three repositories share one Engine (see open_engine). For SQLite
":memory:" URLs the engine uses a StaticPool so every thread of the ASGI
threadpool sees the same in-memory database.

Error policy: any SQLAlchemyError is logged and re-raised as
CollaboratorUnavailable, which aborts the request.

Timestamps are stored as fixed-width UTC ISO-8601 strings (microseconds
always present, "+00:00" suffix). Fixed width keeps string comparison in SQL
equivalent to chronological comparison, which the login-log window query
relies on.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: may import from core/, never from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    distinct,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.errors import CollaboratorUnavailable
from core.models import Ban, BanLevel, FailedAttemptsSummary, LoginAttemptRecord, User

logger = logging.getLogger("consentgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("email", String(255), nullable=False, unique=True),
    Column("steam_id", BigInteger),
    Column("gog_id", String(100)),
    Column("failed_login_count", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_user_permissions = Table(
    "user_permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("permission", String(100), nullable=False),
    UniqueConstraint("user_id", "permission"),
)

_bans = Table(
    "bans",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("player_id", Integer, nullable=False, index=True),
    Column("author_id", Integer, nullable=False),
    Column("level", String(10), nullable=False),  # "GLOBAL" | "CHAT"
    Column("reason", Text, nullable=False),
    Column("expires_at", String(32)),  # NULL = permanent
    Column("create_time", String(32), nullable=False),
    Column("revoke_time", String(32)),
    Column("revoke_reason", Text),
    Column("revoke_author_id", Integer),
)

_login_log = Table(
    "login_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL when the submitted name matched nobody
    Column("ip", String(45), nullable=False, index=True),  # IPv6 max length
    Column("attempt_at", String(32), nullable=False),
    Column("success", Integer, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the login-log writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str) -> Engine:
    """Create the shared engine and make sure every table exists.

    Usage:
        engine = open_engine("sqlite:///consentgate.db")
        users, bans, log = UserStore(engine), BanStore(engine), LoginLogStore(engine)
    """
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_url:
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    if db_url.startswith("sqlite") and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_ISO_FORMAT)


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


class _Repository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @contextmanager
    def _connect(self, operation: str) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("%s failed: %s", operation, e)
            raise CollaboratorUnavailable(f"{operation} failed") from e


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore(_Repository):
    """IdentityStore backed by the users and user_permissions tables."""

    def create_user(
        self,
        username: str,
        password_hash: str,
        email: str,
        steam_id: int | None = None,
        gog_id: str | None = None,
    ) -> int:
        """Insert a user and return its id.

        Duplicate usernames or emails raise CollaboratorUnavailable wrapping
        the IntegrityError.
        """
        with self._connect("create_user") as conn:
            result = conn.execute(
                _users.insert().values(
                    username=username,
                    password=password_hash,
                    email=email,
                    steam_id=steam_id,
                    gog_id=gog_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def grant_permission(self, user_id: int, permission: str) -> None:
        with self._connect("grant_permission") as conn:
            conn.execute(_user_permissions.insert().values(user_id=user_id, permission=permission))
            conn.commit()

    def find_by_username_or_email(self, username: str, email: str) -> User | None:
        with self._connect("find_by_username_or_email") as conn:
            row = conn.execute(
                _users.select()
                .where(or_(_users.c.username == username, _users.c.email == email))
                .order_by(_users.c.id)
                .limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with self._connect("find_by_id") as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_permissions(self, user_id: int) -> set[str]:
        with self._connect("find_permissions") as conn:
            rows = conn.execute(
                select(_user_permissions.c.permission).where(_user_permissions.c.user_id == user_id)
            ).fetchall()
        return {r.permission for r in rows}

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint. Never raises."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False


class BanStore(_Repository):
    """BanLedger backed by the bans table."""

    def create_ban(self, ban: Ban) -> int:
        with self._connect("create_ban") as conn:
            result = conn.execute(
                _bans.insert().values(
                    player_id=ban.subject_id,
                    author_id=ban.issuer_id,
                    level=ban.level.value,
                    reason=ban.reason,
                    expires_at=_to_iso(ban.expires_at) if ban.expires_at else None,
                    create_time=_now_iso(),
                    revoke_time=_to_iso(ban.revoked_at) if ban.revoked_at else None,
                    revoke_reason=ban.revoke_reason,
                    revoke_author_id=ban.revoked_by,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def revoke_ban(self, ban_id: int, revoked_by: int, reason: str, at: datetime | None = None) -> bool:
        """Revoke a ban. Returns False if the ban does not exist or is already revoked.

        The revoke_time IS NULL condition makes revocation terminal: a second
        revoke never overwrites the first one.
        """
        at = at or datetime.now(timezone.utc)
        with self._connect("revoke_ban") as conn:
            result = conn.execute(
                _bans.update()
                .where((_bans.c.id == ban_id) & (_bans.c.revoke_time.is_(None)))
                .values(revoke_time=_to_iso(at), revoke_reason=reason, revoke_author_id=revoked_by)
            )
            conn.commit()
        return result.rowcount > 0

    def find_bans(self, subject_id: int, level: BanLevel | None = None) -> list[Ban]:
        query = _bans.select().where(_bans.c.player_id == subject_id)
        if level is not None:
            query = query.where(_bans.c.level == level.value)
        with self._connect("find_bans") as conn:
            rows = conn.execute(query.order_by(_bans.c.id)).fetchall()
        return [_row_to_ban(r) for r in rows]


class LoginLogStore(_Repository):
    """AttemptLedger backed by the append-only login_log table."""

    def append(self, record: LoginAttemptRecord) -> None:
        with self._connect("append_login_attempt") as conn:
            conn.execute(
                _login_log.insert().values(
                    user_id=record.subject_id,
                    ip=record.origin_ip,
                    attempt_at=_to_iso(record.attempted_at),
                    success=1 if record.success else 0,
                )
            )
            conn.commit()

    def summarize_failures_by_ip(self, origin_ip: str, since: datetime) -> FailedAttemptsSummary:
        """Aggregate failed attempts from origin_ip at or after since.

        accounts_affected counts distinct known users only; failures against
        unknown usernames add to failed_count but not to accounts_affected.
        """
        with self._connect("summarize_failures_by_ip") as conn:
            row = conn.execute(
                select(
                    func.count().label("failed_count"),
                    func.count(distinct(_login_log.c.user_id)).label("accounts_affected"),
                    func.min(_login_log.c.attempt_at).label("first_failure_at"),
                    func.max(_login_log.c.attempt_at).label("last_failure_at"),
                ).where(
                    (_login_log.c.ip == origin_ip)
                    & (_login_log.c.success == 0)
                    & (_login_log.c.attempt_at >= _to_iso(since))
                )
            ).fetchone()
        if row is None or not row.failed_count:
            return FailedAttemptsSummary()
        return FailedAttemptsSummary(
            failed_count=row.failed_count,
            accounts_affected=row.accounts_affected,
            first_failure_at=_from_iso(row.first_failure_at),
            last_failure_at=_from_iso(row.last_failure_at),
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password,
        email=row.email,
        steam_id=row.steam_id,
        gog_id=row.gog_id,
        failed_login_count=row.failed_login_count or 0,
    )


def _row_to_ban(row) -> Ban:
    return Ban(
        id=row.id,
        subject_id=row.player_id,
        issuer_id=row.author_id,
        level=BanLevel(row.level),
        reason=row.reason,
        expires_at=_from_iso(row.expires_at),
        revoked_at=_from_iso(row.revoke_time),
        revoked_by=row.revoke_author_id,
        revoke_reason=row.revoke_reason,
        created_at=_from_iso(row.create_time),
    )
