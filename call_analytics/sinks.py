"""
Durable sinks for analytics records (idle sessions, call history).

Every sink must tolerate seeing the same record twice: the delivery queue
retries a record until a write succeeds, and a fan-out write may have reached
some sinks before another one failed.
"""

import asyncio
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.orm import Session

from call_analytics.config import config
from call_analytics.database import SessionLocal
from call_analytics.logging_config import get_logger
from call_analytics.models import CallRecord, IdleSession
from call_analytics.services import CallService, IdleSessionService

logger = get_logger(__name__)


class DatabaseSink:
    """Writes records through the service layer. Replays are ignored by the services."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    async def write(self, record: Any) -> None:
        await asyncio.to_thread(self._write, record)

    def _write(self, record: Any) -> None:
        db = self.session_factory()
        try:
            if isinstance(record, IdleSession):
                IdleSessionService.record(db, record)
            elif isinstance(record, CallRecord):
                CallService.record_call(db, record)
            else:
                raise TypeError(f"unsupported record type: {type(record).__name__}")
        finally:
            db.close()


class HttpAnalyticsSink:
    """
    External analytics tables over REST (NocoDB-style API).

    Records are POSTed as a one-element list to ``{base_url}/{table}/records``
    with the API token in the ``xc-token`` header.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        tables: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.tables = tables or {
            IdleSession.record_type: config.ANALYTICS_TABLE_IDLE_SESSIONS,
            CallRecord.record_type: config.ANALYTICS_TABLE_CALLS,
        }
        headers = {"Content-Type": "application/json"}
        if token:
            headers["xc-token"] = token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def write(self, record: Any) -> None:
        record_type = getattr(record, "record_type", None)
        table = self.tables.get(record_type)
        if table is None:
            raise TypeError(f"no analytics table for record type: {record_type}")

        response = await self._client.post(f"/{table}/records", json=[record.to_wire()])
        response.raise_for_status()
        logger.info("analytics_record_written", table=table, agent_code=record.agent_code)

    async def aclose(self) -> None:
        await self._client.aclose()


class FanoutSink:
    """Writes each record to every sink in order; the first failure fails the write."""

    def __init__(self, sinks: list):
        self.sinks = sinks

    async def write(self, record: Any) -> None:
        for sink in self.sinks:
            await sink.write(record)

    async def aclose(self) -> None:
        for sink in self.sinks:
            close = getattr(sink, "aclose", None)
            if close is not None:
                await close()


def build_default_sink():
    """Database always; the external analytics API when configured."""
    sinks: list = [DatabaseSink()]
    if config.has_analytics_sink():
        sinks.append(HttpAnalyticsSink(
            base_url=config.ANALYTICS_SINK_URL,
            token=config.ANALYTICS_SINK_TOKEN,
            timeout=config.ANALYTICS_SINK_TIMEOUT_SECONDS,
        ))
    return FanoutSink(sinks)


def _daily_stats_client() -> httpx.Client:
    headers = {"Content-Type": "application/json"}
    if config.ANALYTICS_SINK_TOKEN:
        headers["xc-token"] = config.ANALYTICS_SINK_TOKEN
    return httpx.Client(
        base_url=config.ANALYTICS_SINK_URL.rstrip("/"),
        headers=headers,
        timeout=config.ANALYTICS_SINK_TIMEOUT_SECONDS,
    )


def post_daily_stats(rows: list[dict], client: Optional[httpx.Client] = None) -> int:
    """Bulk-create daily stats rows in the external analytics API. Returns rows sent."""
    if not rows:
        return 0

    owns_client = client is None
    if owns_client:
        client = _daily_stats_client()
    try:
        response = client.post(f"/{config.ANALYTICS_TABLE_DAILY_STATS}/records", json=rows)
        response.raise_for_status()
    finally:
        if owns_client:
            client.close()

    logger.info("daily_stats_posted", rows=len(rows))
    return len(rows)


def upsert_daily_stats(rows: list[dict], client: Optional[httpx.Client] = None) -> int:
    """
    Write daily stats one row at a time, updating the row already stored for
    the same agent and date instead of adding a second one.

    A failing row is logged and skipped; the rest are still attempted.

    Returns:
        Number of rows written
    """
    owns_client = client is None
    if owns_client:
        client = _daily_stats_client()

    path = f"/{config.ANALYTICS_TABLE_DAILY_STATS}/records"
    written = 0
    try:
        for row in rows:
            try:
                lookup = client.get(path, params={
                    "where": f"(agentCode,eq,{row['agentCode']})~and(date,eq,{row['date']})",
                    "limit": 1,
                })
                lookup.raise_for_status()
                existing = lookup.json().get("list") or []

                if existing:
                    response = client.patch(path, json=[{"Id": existing[0]["Id"], **row}])
                else:
                    response = client.post(path, json=[row])
                response.raise_for_status()
            except (httpx.HTTPError, ValueError, KeyError) as e:
                logger.error("daily_stats_upsert_failed", agent_code=row["agentCode"], date=row["date"], error=str(e))
                continue
            written += 1
    finally:
        if owns_client:
            client.close()

    logger.info("daily_stats_upserted", rows=written, total=len(rows))
    return written
