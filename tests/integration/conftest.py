from __future__ import annotations

import pytest
from sqlalchemy import text

from guidepass.db.ledger_wipe import assert_wipe_allowed, wipe_statement
from guidepass.db.session import engine


@pytest.fixture(autouse=True)
async def cleanup_db() -> None:
    # Dispose pooled connections between tests to avoid cross-event-loop asyncpg reuse.
    await engine.dispose()

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - environment-dependent
        pytest.skip(f"Postgres is required for integration tests: {exc}")

    assert_wipe_allowed(engine.url.render_as_string(hide_password=True))

    async with engine.begin() as conn:
        await conn.execute(text(wipe_statement()))

    yield

    await engine.dispose()
