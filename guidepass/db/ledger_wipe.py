from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.engine import make_url

import guidepass.db.models  # noqa: F401
from guidepass.db.models.base import Base

WIPE_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "postgres", "guidepass_postgres"})
WIPE_DATABASE_MARKER = "test"


class UnsafeLedgerWipeError(RuntimeError):
    pass


def ledger_tables() -> tuple[str, ...]:
    """Every mapped ledger table, dependants before the tables they reference."""
    return tuple(table.name for table in reversed(Base.metadata.sorted_tables))


@dataclass(frozen=True, slots=True)
class WipeTarget:
    backend: str
    database_name: str
    host: str

    @classmethod
    def from_url(cls, database_url: str) -> WipeTarget:
        parsed = make_url(database_url)
        return cls(
            backend=parsed.get_backend_name(),
            database_name=(parsed.database or "").strip(),
            host=(parsed.host or "").strip().lower(),
        )

    def refusal(self) -> str | None:
        if self.backend != "postgresql":
            return "ledger tables live only in PostgreSQL"
        if WIPE_DATABASE_MARKER not in self.database_name.lower():
            return f"database name must contain '{WIPE_DATABASE_MARKER}'"
        if self.host not in WIPE_HOSTS:
            return f"host '{self.host}' is not a local ledger database host"
        return None


def wipe_statement(tables: Iterable[str] | None = None) -> str:
    known = ledger_tables()
    selected = known if tables is None else tuple(tables)
    foreign = sorted(set(selected) - set(known))
    if foreign:
        raise ValueError(f"not ledger tables: {', '.join(foreign)}")
    if not selected:
        raise ValueError("no ledger tables selected")
    return f"TRUNCATE TABLE {', '.join(selected)} RESTART IDENTITY CASCADE"


def assert_wipe_allowed(database_url: str) -> WipeTarget:
    target = WipeTarget.from_url(database_url)
    reason = target.refusal()
    if reason is not None:
        raise UnsafeLedgerWipeError(
            f"Refusing to wipe ledger tables in '{target.database_name}' on '{target.host}': {reason}. "
            "Point DATABASE_URL at a local database such as 'guidepass_test'."
        )
    return target
