"""REST API for the ticket assignment and SLA engine."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from assignment_engine.activity import emit as activity_emit, get_recent as activity_get_recent, start_redis_subscriber
from assignment_engine.config import REDIS_URL
from assignment_engine.engine import Engine, build_engine
from assignment_engine.models import (
    AgentSnapshot,
    AssignmentResult,
    AssignmentRule,
    NotificationIntent,
    RebalanceReport,
    SLASweepReport,
    SLAStatus,
    TicketContext,
)
from assignment_engine.store.redis_store import RedisStore

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_arq_pool = None


def get_engine() -> Engine:
    """Process-wide engine over Redis. Tests override this dependency."""
    global _engine
    if _engine is None:
        _engine = build_engine(RedisStore.from_url(REDIS_URL))
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _arq_pool
    _arq_pool = None
    try:
        from arq import create_pool
        from arq.connections import RedisSettings
        _arq_pool = await create_pool(RedisSettings.from_dsn(REDIS_URL))
    except Exception as e:
        logger.warning("Redis/ARQ pool unavailable: %s. Deferred first-response checks will run inline.", e)
    start_redis_subscriber()
    try:
        yield
    finally:
        if _arq_pool is not None:
            await _arq_pool.close()
            _arq_pool = None


app = FastAPI(
    title="Ticket Assignment Engine",
    description="Rule-based agent assignment, workload rebalancing and SLA tracking.",
    version="0.3.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type", "Authorization"],
)


class AssignmentRequest(BaseModel):
    ticket_id: str = Field(..., description="Ticket to assign")
    agent_id: Optional[str] = Field(default=None, description="Manual override: assign to this agent")


class ResponseEvent(BaseModel):
    """A comment or chat message written on a ticket."""

    author_id: str
    created_at: datetime
    source: str = Field(default="comment", description="Ingestion path, e.g. comment or chat")


class FirstResponseResult(BaseModel):
    ticket_id: str
    first_response_logged: bool
    deferred: bool = False


def _ticket_context(engine: Engine, ticket_id: str) -> TicketContext:
    ticket = engine.store.fetch_ticket(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return TicketContext.from_record(ticket)


@app.post("/assignments", response_model=AssignmentResult)
def create_assignment(payload: AssignmentRequest, engine: Engine = Depends(get_engine)) -> AssignmentResult:
    """Pick an agent, reserve a workload slot and persist the assignment."""
    ticket = _ticket_context(engine, payload.ticket_id)
    return engine.assignments.assign_and_reserve(ticket, explicit_agent_id=payload.agent_id)


@app.post("/assignments/preview", response_model=AssignmentResult)
def preview_assignment(payload: AssignmentRequest, engine: Engine = Depends(get_engine)) -> AssignmentResult:
    """Decision only; nothing is written."""
    ticket = _ticket_context(engine, payload.ticket_id)
    return engine.assignments.assign(ticket, explicit_agent_id=payload.agent_id)


@app.post("/tickets/{ticket_id}/release")
def release_ticket(ticket_id: str, engine: Engine = Depends(get_engine)) -> dict:
    """Free the assignee's workload slot (call when a ticket is resolved or closed)."""
    if engine.store.fetch_ticket(ticket_id) is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    agent_id = engine.assignments.release(ticket_id)
    return {"ticket_id": ticket_id, "released_agent_id": agent_id}


@app.post("/rebalance", response_model=RebalanceReport)
def rebalance(engine: Engine = Depends(get_engine)) -> RebalanceReport:
    return engine.rebalancer.rebalance()


@app.get("/tickets/{ticket_id}/sla", response_model=SLAStatus)
def ticket_sla(ticket_id: str, engine: Engine = Depends(get_engine)) -> SLAStatus:
    status = engine.sla.status_for(ticket_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return status


@app.post("/tickets/{ticket_id}/responses", response_model=FirstResponseResult)
async def record_response(
    ticket_id: str,
    event: ResponseEvent,
    defer: bool = False,
    engine: Engine = Depends(get_engine),
) -> FirstResponseResult:
    """
    Single entry point for comment and chat ingestion. With defer=true the check
    is queued for the worker when the ARQ pool is up.
    """
    if engine.store.fetch_ticket(ticket_id) is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    pool = _arq_pool
    if defer and pool is not None:
        await pool.enqueue_job(
            "record_first_response",
            {"ticket_id": ticket_id, "author_id": event.author_id, "created_at": event.created_at.isoformat()},
        )
        activity_emit("first_response_check_queued", {"ticket_id": ticket_id, "source": event.source})
        return FirstResponseResult(ticket_id=ticket_id, first_response_logged=False, deferred=True)
    logged = engine.sla.record_potential_first_response(ticket_id, event.author_id, event.created_at)
    return FirstResponseResult(ticket_id=ticket_id, first_response_logged=logged)


@app.post("/sla/sweep", response_model=SLASweepReport)
def sla_sweep(engine: Engine = Depends(get_engine)) -> SLASweepReport:
    return engine.sla.sweep()


@app.get("/agents", response_model=list[AgentSnapshot])
def list_agents(include_offline: bool = False, engine: Engine = Depends(get_engine)) -> list[AgentSnapshot]:
    """Current agent snapshots (workload, performance, skills)."""
    return engine.directory.build_snapshots(include_offline=include_offline)


@app.get("/rules", response_model=list[AssignmentRule])
def list_rules(engine: Engine = Depends(get_engine)) -> list[AssignmentRule]:
    return engine.rules.all_rules()


@app.get("/rules/stats")
def rule_stats(engine: Engine = Depends(get_engine)) -> dict:
    return engine.rules.statistics()


@app.get("/notifications", response_model=list[NotificationIntent])
def list_notifications(drain: bool = False, engine: Engine = Depends(get_engine)) -> list[NotificationIntent]:
    """Pending notification intents. drain=true hands them off and clears the outbox."""
    return engine.outbox.drain() if drain else engine.outbox.pending()


@app.get("/activity")
def get_activity(limit: int = 100) -> dict:
    """Recent engine activity (assignments, rebalances, first responses, SLA sweeps)."""
    if limit < 1 or limit > 200:
        limit = 100
    return {"events": activity_get_recent(limit=limit)}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
