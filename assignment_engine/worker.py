"""
ARQ background worker: periodic workload rebalancing and SLA sweeps, plus
deferred first-response checks queued by the API.
"""

import logging
from dataclasses import replace
from datetime import datetime

from arq import cron, run_worker
from arq.connections import RedisSettings

from assignment_engine.activity import publish_event
from assignment_engine.config import (
    REBALANCE_INTERVAL_MINUTES,
    REDIS_CONN_TIMEOUT,
    REDIS_URL,
    SLA_SWEEP_INTERVAL_MINUTES,
)
from assignment_engine.engine import build_engine
from assignment_engine.store.redis_store import RedisStore

logger = logging.getLogger(__name__)


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, minutes)))


async def startup(ctx: dict) -> None:
    ctx["engine"] = build_engine(RedisStore.from_url(REDIS_URL))


async def rebalance_workload(ctx: dict) -> dict:
    """Cron job: move tickets from overloaded to underloaded agents."""
    report = ctx["engine"].rebalancer.rebalance()
    publish_event("workload_rebalanced", report.model_dump(mode="json"))
    return report.model_dump(mode="json")


async def sweep_sla(ctx: dict) -> dict:
    """Cron job: emit SLA warning/breach notifications for open tickets."""
    report = ctx["engine"].sla.sweep()
    publish_event("sla_sweep", report.model_dump())
    return report.model_dump()


async def record_first_response(ctx: dict, payload: dict) -> bool:
    """ARQ job: first-response check for a comment or chat message."""
    ticket_id = payload.get("ticket_id", "?")
    try:
        created_at = datetime.fromisoformat(payload["created_at"])
        logged = ctx["engine"].sla.record_potential_first_response(ticket_id, payload["author_id"], created_at)
    except (KeyError, ValueError) as e:
        logger.exception("Bad first-response payload for ticket %s: %s", ticket_id, e)
        raise
    if logged:
        publish_event("first_response", {"ticket_id": ticket_id, "agent_id": payload["author_id"]})
    return logged


class WorkerSettings:
    functions = [record_first_response]
    cron_jobs = [
        cron(rebalance_workload, minute=_every(REBALANCE_INTERVAL_MINUTES), run_at_startup=False),
        cron(sweep_sla, minute=_every(SLA_SWEEP_INTERVAL_MINUTES), run_at_startup=True),
    ]
    on_startup = startup
    redis_settings = replace(
        RedisSettings.from_dsn(REDIS_URL),
        conn_timeout=REDIS_CONN_TIMEOUT,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Worker starting (Redis: %s).", REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL)
    run_worker(WorkerSettings)
