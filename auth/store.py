"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and their codes.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_record are the mappers. Services and routes never
touch SQL directly.

Each account row embeds two one-time-code slots (email verification and
password reset), each a (code, expires_at) column pair. Both columns of a
slot are always written and cleared in the same statement, so a slot is
either fully present or fully absent.

Atomicity:
  Every state change that depends on the current slot contents is a single
  conditional UPDATE or DELETE whose WHERE clause re-checks that state.
  rowcount tells the caller whether it won. Two concurrent submissions of the
  same code therefore cannot both succeed, and a verification that commits
  before a sweep removes the account from the sweep's delete set.

Timestamps are stored as fixed-width ISO 8601 UTC strings (always
microsecond precision, always +00:00) so string comparison in SQL is
chronological comparison.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/authgate.db unless a database URL is passed in.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account, Purpose, VerificationRecord

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'authgate.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("phone_country_code", String(8)),
    Column("phone_number", String(32)),
    Column("hashed_password", Text, nullable=False),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("verification_code", String(6)),
    Column("verification_expires_at", String(32)),
    Column("reset_code", String(6)),
    Column("reset_expires_at", String(32)),
)

Index("ix_accounts_unverified_created", _accounts.c.is_verified, _accounts.c.created_at)

# (code column, expires_at column) per purpose
_SLOTS = {
    Purpose.EMAIL_VERIFY: (_accounts.c.verification_code, _accounts.c.verification_expires_at),
    Purpose.PASSWORD_RESET: (_accounts.c.reset_code, _accounts.c.reset_expires_at),
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _slot_values(purpose: Purpose, record: VerificationRecord | None) -> dict:
    code_col, expires_col = _SLOTS[purpose]
    if record is None:
        return {code_col.name: None, expires_col.name: None}
    return {code_col.name: record.code, expires_col.name: _iso(record.expires_at)}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities and their embedded one-time codes.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="a@example.com", name="A", hashed_password=h))
        record = store.get_record("a@example.com", Purpose.EMAIL_VERIFY)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account (with any initial code slots) and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers catch IntegrityError as the signal that a concurrent request
        registered the same address first.
        """
        created_at = account.created_at or datetime.now(timezone.utc)
        values = {
            "email": account.email,
            "name": account.name,
            "phone_country_code": account.phone_country_code,
            "phone_number": account.phone_number,
            "hashed_password": account.hashed_password,
            "is_verified": 1 if account.is_verified else 0,
            "created_at": _iso(created_at),
        }
        values.update(_slot_values(Purpose.EMAIL_VERIFY, account.email_verification))
        values.update(_slot_values(Purpose.PASSWORD_RESET, account.password_reset))
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def delete_unverified_before(self, cutoff: datetime) -> int:
        """Hard-delete unverified accounts created at or before cutoff that still hold a verification code.

        One DELETE with the whole filter in its WHERE clause, so the
        unverified check is re-evaluated at delete time. Returns the number
        of rows removed.
        """
        code_col, _ = _SLOTS[Purpose.EMAIL_VERIFY]
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.delete().where(
                    (_accounts.c.is_verified == 0) & (_accounts.c.created_at <= _iso(cutoff)) & code_col.isnot(None)
                )
            )
            conn.commit()
        return result.rowcount

    def count_pending_unverified(self) -> int:
        """Return how many unverified accounts still hold a verification code."""
        code_col, _ = _SLOTS[Purpose.EMAIL_VERIFY]
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_accounts).where((_accounts.c.is_verified == 0) & code_col.isnot(None))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Verification records
    # ------------------------------------------------------------------

    def get_record(self, email: str, purpose: Purpose) -> VerificationRecord | None:
        """Return the stored record for (email, purpose), stale or not. None if absent."""
        code_col, expires_col = _SLOTS[purpose]
        with self.engine.connect() as conn:
            row = conn.execute(select(code_col, expires_col).where(_accounts.c.email == email)).fetchone()
        if row is None:
            return None
        return _row_to_record(row[0], row[1])

    def put_record(self, account_id: int, purpose: Purpose, record: VerificationRecord) -> bool:
        """Overwrite the slot unconditionally. Returns False if the account does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(**_slot_values(purpose, record))
            )
            conn.commit()
        return result.rowcount > 0

    def clear_record(self, account_id: int, purpose: Purpose) -> bool:
        """Set both columns of the slot to NULL. Returns False if the account does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(**_slot_values(purpose, None))
            )
            conn.commit()
        return result.rowcount > 0

    def replace_stale_record(
        self, account_id: int, purpose: Purpose, record: VerificationRecord, now: datetime
    ) -> bool:
        """Overwrite the slot only if it is absent or expired at now.

        For email verification the account must also still be unverified.
        Returns True if this call wrote the record, False if a live record
        (or a completed verification) was in the way.
        """
        code_col, expires_col = _SLOTS[purpose]
        condition = (_accounts.c.id == account_id) & (code_col.is_(None) | (expires_col <= _iso(now)))
        if purpose is Purpose.EMAIL_VERIFY:
            condition = condition & (_accounts.c.is_verified == 0)
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(condition).values(**_slot_values(purpose, record)))
            conn.commit()
        return result.rowcount > 0

    def consume_record(self, account_id: int, purpose: Purpose, code: str, now: datetime, **updates) -> bool:
        """Accept a code: clear the slot and apply updates in one guarded UPDATE.

        The WHERE clause requires the stored code to equal code and to still be
        live at now (expires_at strictly later). Accepted updates:
        is_verified (bool), hashed_password (str).

        Returns True for exactly one caller per issued code; mismatched,
        expired, or already-consumed codes leave the row untouched and return
        False.
        """
        if "is_verified" in updates:
            updates["is_verified"] = 1 if updates["is_verified"] else 0
        code_col, expires_col = _SLOTS[purpose]
        values = _slot_values(purpose, None)
        values.update(updates)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (code_col == code) & (expires_col > _iso(now)))
                .values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(code: str | None, expires_at: str | None) -> VerificationRecord | None:
    # Half-written slots cannot be produced by this store; treat one as absent.
    if code is None or expires_at is None:
        return None
    return VerificationRecord(code=code, expires_at=_parse(expires_at))


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        name=row.name,
        phone_country_code=row.phone_country_code,
        phone_number=row.phone_number,
        hashed_password=row.hashed_password,
        is_verified=bool(row.is_verified),
        created_at=_parse(row.created_at),
        email_verification=_row_to_record(row.verification_code, row.verification_expires_at),
        password_reset=_row_to_record(row.reset_code, row.reset_expires_at),
    )
