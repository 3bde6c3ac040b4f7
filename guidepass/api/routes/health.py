from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from guidepass.core.config import get_settings
from guidepass.db.session import SessionLocal

router = APIRouter(tags=["health"])
logger = structlog.get_logger(__name__)

CHECK_TIMEOUT_SECONDS = 2.0
LEDGER_SCHEMA_REVISION = "5d2e8f1a7c30"

CheckResult = dict[str, Any]


class _UnexpectedReply(Exception):
    pass


def _ok_check(extra: dict[str, Any] | None = None) -> CheckResult:
    payload: CheckResult = {"status": "ok"}
    if extra:
        payload.update(extra)
    return payload


def _failed_check(error: str) -> dict[str, str]:
    return {"status": "failed", "error": error}


async def _guarded(name: str, action: Callable[[], Awaitable[dict[str, Any] | None]]) -> CheckResult:
    # Errors name the check only; exception text may hold credentials.
    try:
        extra = await asyncio.wait_for(action(), timeout=CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("health_check_timed_out", check=name, timeout_seconds=CHECK_TIMEOUT_SECONDS)
        return _failed_check(f"{name}_timeout")
    except _UnexpectedReply as exc:
        logger.warning("health_check_unexpected_reply", check=name, reply=str(exc))
        return _failed_check(f"{name}_unexpected_reply")
    except Exception as exc:
        logger.warning("health_check_failed", check=name, error_type=type(exc).__name__)
        return _failed_check(f"{name}_unavailable")
    return _ok_check(extra)


async def _query_ledger() -> None:
    async with SessionLocal() as session:
        await session.execute(text("SELECT 1 FROM user_credits LIMIT 1"))


async def _ping_redis() -> None:
    redis_client = Redis.from_url(get_settings().redis_url)
    try:
        pong = await redis_client.ping()
    finally:
        await redis_client.aclose()
    if pong is not True:
        raise _UnexpectedReply(repr(pong))


async def _read_schema_revision() -> dict[str, Any]:
    async with SessionLocal() as session:
        revision = (await session.execute(text("SELECT version_num FROM alembic_version"))).scalar_one_or_none()
    if revision != LEDGER_SCHEMA_REVISION:
        raise _UnexpectedReply(str(revision))
    return {"revision": revision}


async def _check_database() -> CheckResult:
    return await _guarded("database", _query_ledger)


async def _check_redis() -> CheckResult:
    return await _guarded("redis", _ping_redis)


async def _check_schema() -> CheckResult:
    return await _guarded("schema", _read_schema_revision)


async def _collect_checks(*, include_schema: bool = False) -> dict[str, CheckResult]:
    names = ["database", "redis"]
    pending = [_check_database(), _check_redis()]
    if include_schema:
        names.append("schema")
        pending.append(_check_schema())
    return dict(zip(names, await asyncio.gather(*pending)))


def _all_checks_ok(checks: dict[str, CheckResult]) -> bool:
    return all(check.get("status") == "ok" for check in checks.values())


@router.get("/health")
async def health() -> JSONResponse:
    checks = await _collect_checks()
    is_healthy = _all_checks_ok(checks)
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ok" if is_healthy else "degraded",
            "checks": checks,
        },
    )


@router.get("/ready")
async def ready() -> JSONResponse:
    """Ready once the ledger schema is migrated to the revision this build expects."""
    checks = await _collect_checks(include_schema=True)
    is_ready = _all_checks_ok(checks)
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if is_ready else "not_ready",
            "checks": checks,
        },
    )


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "live"}
