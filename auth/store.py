"""
auth/store.py -- SQLAlchemy Core persistence for identities, shared state, and audit.

Pattern: Repository + Data Mapper. Three repositories share one schema:

  IdentityStore -- the credential store (identity records, lockout counters).
  StateStore    -- the shared counter/session backend: sessions, single-use
                   token state (refresh jtis, consumed MFA challenges), and
                   fixed-window rate counters.
  AuditStore    -- append-only audit entries. It has no update or delete
                   method, and nothing else in the app writes audit_log.

Route and service code never touches SQL directly.

Atomicity:
  Counter increments are a single statement each (UPDATE ... SET n = n + 1
  RETURNING n, or INSERT ... ON CONFLICT DO UPDATE ... RETURNING), so
  concurrent callers can never lose an update. Refresh rotation uses a
  conditional UPDATE guarded by the expected previous value; rowcount tells
  the caller whether it won.

Timeouts:
  Every engine carries a bounded wait (SQLite busy timeout, or connect/pool
  timeouts elsewhere). A timeout surfaces as SQLAlchemyError and the HTTP
  layer answers 503 -- never a silent allow.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import math
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import AuditLogEntry, Identity, IdentityStatus, PermissionOverrides, Role, Session

_DEFAULT_DB_URL = "sqlite:///warden.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),  # always lower-cased
    Column("name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("permission_overrides", Text),  # JSON {"add": [...], "remove": [...]}
    Column("status", String(32), nullable=False, server_default="active"),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("lockout_until", Float),
    Column("mfa_secret", Text),
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", Text),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("identity_id", String(36), nullable=False, index=True),
    Column("device_id", String(255), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("user_agent", Text),
    Column("issued_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
    Column("last_activity", Float, nullable=False),
    Column("active", Integer, nullable=False, server_default="1"),
)

_state = Table(
    "auth_state",
    _metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("expires_at", Float, nullable=False),
)

_counters = Table(
    "rate_counters",
    _metadata,
    Column("key", String(255), primary_key=True),
    Column("hits", Integer, nullable=False),
    Column("expires_at", Float, nullable=False),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("actor_id", String(64), nullable=False, index=True),
    Column("action", String(64), nullable=False),
    Column("resource_type", String(64), nullable=False),
    Column("resource_id", String(255)),
    Column("outcome", String(16), nullable=False),
    Column("suspicious", Integer, nullable=False, server_default="0"),
    Column("detail", Text),  # JSON object
    Column("ip", String(64)),
    Column("user_agent", Text),
    Column("session_id", String(64)),
    Column("timestamp", String(32), nullable=False, index=True),
)

_INCREMENT_SQL = text(
    """
    INSERT INTO rate_counters (key, hits, expires_at) VALUES (:key, 1, :expires_at)
    ON CONFLICT (key) DO UPDATE SET hits = rate_counters.hits + 1
    RETURNING hits
    """
)


# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> Engine:
    """Create an engine whose every wait is bounded by `timeout` seconds."""
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout  # busy timeout on locked writes
    else:
        engine_args["pool_timeout"] = timeout
        if db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(1, int(timeout))
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now_iso(now: float | None = None) -> str:
    return datetime.fromtimestamp(time.time() if now is None else now, timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore("sqlite:///warden.db")
        ident = store.create(Identity(email="a@example.com", name="A", password_hash=h))
        store.get_by_email("A@Example.com")   # case-insensitive
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)

    def create(self, identity: Identity) -> Identity:
        """Insert a new identity and return it with id/created_at filled in.

        Raises sqlalchemy.exc.IntegrityError if the email (or id) already
        exists -- callers treat that as a conflict, not a crash.
        """
        identity.id = identity.id or str(uuid.uuid4())
        identity.email = normalize_email(identity.email)
        identity.created_at = identity.created_at or _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _identities.insert().values(
                    id=identity.id,
                    email=identity.email,
                    name=identity.name,
                    password_hash=identity.password_hash,
                    role=identity.role.value,
                    permission_overrides=identity.overrides.to_json(),
                    status=identity.status.value,
                    failed_attempts=identity.failed_attempts,
                    lockout_until=identity.lockout_until,
                    mfa_secret=identity.mfa_secret,
                    mfa_enabled=1 if identity.mfa_enabled else 0,
                    created_at=identity.created_at,
                    last_login=identity.last_login,
                )
            )
            conn.commit()
        return identity

    def get_by_email(self, email: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.email == normalize_email(email))).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: str) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def update(self, identity_id: str, **fields) -> bool:
        """Unconditionally update mutable fields on an identity.

        Accepted fields: name, password_hash, role, overrides, status,
        mfa_secret, mfa_enabled, last_login. Enums and overrides are
        serialized here so callers pass domain types.

        Returns True if a row was updated, False if identity_id was not found.
        """
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "status" in fields:
            fields["status"] = IdentityStatus(fields["status"]).value
        if "overrides" in fields:
            fields["permission_overrides"] = fields.pop("overrides").to_json()
        if "mfa_enabled" in fields:
            fields["mfa_enabled"] = 1 if fields["mfa_enabled"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_identities.update().where(_identities.c.id == identity_id).values(**fields))
            conn.commit()
            updated = result.rowcount > 0
        return updated

    def increment_failed_attempts(self, identity_id: str) -> int:
        """Atomically bump the failed-attempt counter and return the new value (0 if not found)."""
        with self.engine.connect() as conn:
            count = conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(failed_attempts=_identities.c.failed_attempts + 1)
                .returning(_identities.c.failed_attempts)
            ).scalar()
            conn.commit()
        return count or 0

    def reset_failed_attempts(self, identity_id: str) -> None:
        """Zero the counter and clear any lockout."""
        with self.engine.connect() as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(failed_attempts=0, lockout_until=None)
            )
            conn.commit()

    def set_lockout(self, identity_id: str, until: float) -> None:
        with self.engine.connect() as conn:
            conn.execute(_identities.update().where(_identities.c.id == identity_id).values(lockout_until=until))
            conn.commit()

    def list_identities(self, limit: int = 100, offset: int = 0) -> list[Identity]:
        """Return identities ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _identities.select().order_by(_identities.c.email).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def count_active_with_role(self, role: Role) -> int:
        """Used to refuse demoting or deactivating the last active super admin [M4]."""
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM identities WHERE role = :role AND status = 'active'"),
                {"role": role.value},
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Shared counter / session backend
# ---------------------------------------------------------------------------


class StateStore:
    """Sessions, single-use token state, and rate counters.

    Every record carries an expiry. Reads treat expired records as absent
    and purge_expired() deletes them (the lifespan purge loop calls it).
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        self.clock = clock

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def atomic_increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Increment the fixed-window counter for key; return (count, window_reset_at).

        The window start is folded into the row key, so a new window starts
        a new row at count 1 and old rows simply age out.
        """
        window_start = math.floor(self.clock() / window_seconds) * window_seconds
        reset_at = window_start + window_seconds
        with self.engine.connect() as conn:
            count = conn.execute(
                _INCREMENT_SQL, {"key": f"{key}:{int(window_start)}", "expires_at": reset_at}
            ).scalar_one()
            conn.commit()
        return count, reset_at

    # ------------------------------------------------------------------
    # Single-use values
    # ------------------------------------------------------------------

    def get_value(self, key: str) -> str | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _state.select().where((_state.c.key == key) & (_state.c.expires_at > self.clock()))
            ).fetchone()
        return row.value if row is not None else None

    def put_value(self, key: str, value: str, ttl_seconds: float) -> None:
        """Unconditional last-writer-wins write."""
        with self.engine.begin() as conn:
            conn.execute(_state.delete().where(_state.c.key == key))
            conn.execute(_state.insert().values(key=key, value=value, expires_at=self.clock() + ttl_seconds))

    def conditional_write(self, key: str, expected: str | None, new_value: str, ttl_seconds: float) -> bool:
        """Write new_value only if the live value equals expected (None = absent).

        Returns True on success, False on conflict. Exactly one of several
        concurrent writers with the same expected value can succeed.
        """
        now = self.clock()
        expires_at = now + ttl_seconds
        if expected is None:
            try:
                with self.engine.begin() as conn:
                    conn.execute(_state.insert().values(key=key, value=new_value, expires_at=expires_at))
                return True
            except IntegrityError:
                # An expired leftover counts as absent -- claim it conditionally.
                with self.engine.begin() as conn:
                    result = conn.execute(
                        _state.update()
                        .where((_state.c.key == key) & (_state.c.expires_at <= now))
                        .values(value=new_value, expires_at=expires_at)
                    )
                    claimed = result.rowcount == 1
                return claimed
        with self.engine.begin() as conn:
            result = conn.execute(
                _state.update()
                .where((_state.c.key == key) & (_state.c.value == expected) & (_state.c.expires_at > now))
                .values(value=new_value, expires_at=expires_at)
            )
            swapped = result.rowcount == 1
        return swapped

    def delete_value(self, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_state.delete().where(_state.c.key == key))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def put_session(self, session: Session) -> None:
        """Write (or overwrite) a session. Keyed by its unique id; last writer wins."""
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session.id))
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    identity_id=session.identity_id,
                    device_id=session.device_id,
                    ip=session.ip,
                    user_agent=session.user_agent,
                    issued_at=session.issued_at,
                    expires_at=session.expires_at,
                    last_activity=session.last_activity,
                    active=1 if session.active else 0,
                )
            )

    def get_session(self, session_id: str) -> Session | None:
        """Return the session, or None if it does not exist or has expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.id == session_id) & (_sessions.c.expires_at > self.clock()))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def set_session_inactive(self, session_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(active=0))
            updated = result.rowcount > 0
        return updated

    def touch_session(self, session_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.active == 1))
                .values(last_activity=self.clock())
            )

    def list_sessions(self, identity_id: str) -> list[Session]:
        """Active, unexpired sessions for an identity, most recently used first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.identity_id == identity_id)
                    & (_sessions.c.active == 1)
                    & (_sessions.c.expires_at > self.clock())
                )
                .order_by(_sessions.c.last_activity.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Delete expired counters, state entries, and sessions. Returns rows removed."""
        now = self.clock()
        removed = 0
        with self.engine.begin() as conn:
            for table in (_counters, _state, _sessions):
                removed += conn.execute(table.delete().where(table.c.expires_at <= now)).rowcount
        return removed

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Audit log (append-only)
# ---------------------------------------------------------------------------


class AuditStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)

    def append(self, entry: AuditLogEntry) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _audit_log.insert().values(
                    id=entry.id,
                    actor_id=entry.actor_id,
                    action=entry.action,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    outcome=entry.outcome,
                    suspicious=1 if entry.suspicious else 0,
                    detail=json.dumps(entry.detail, default=str),
                    ip=entry.ip,
                    user_agent=entry.user_agent,
                    session_id=entry.session_id,
                    timestamp=entry.timestamp,
                )
            )

    def recent(self, limit: int = 100, actor_id: str | None = None, action: str | None = None) -> list[AuditLogEntry]:
        """Newest first, optionally filtered by actor and/or action."""
        query = _audit_log.select()
        if actor_id is not None:
            query = query.where(_audit_log.c.actor_id == actor_id)
        if action is not None:
            query = query.where(_audit_log.c.action == action)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_audit_log.c.timestamp.desc()).limit(limit)).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=Role(row.role),
        overrides=PermissionOverrides.from_json(row.permission_overrides),
        status=IdentityStatus(row.status),
        failed_attempts=row.failed_attempts,
        lockout_until=row.lockout_until,
        mfa_secret=row.mfa_secret,
        mfa_enabled=bool(row.mfa_enabled),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        identity_id=row.identity_id,
        device_id=row.device_id,
        ip=row.ip,
        user_agent=row.user_agent or "",
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        last_activity=row.last_activity,
        active=bool(row.active),
    )


def _row_to_audit_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        actor_id=row.actor_id,
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        outcome=row.outcome,
        suspicious=bool(row.suspicious),
        detail=json.loads(row.detail) if row.detail else {},
        ip=row.ip or "",
        user_agent=row.user_agent or "",
        session_id=row.session_id,
        timestamp=row.timestamp,
    )
