"""Search API — manual runs of monitored queries."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session_factory
from workers.search.queue import ArqSearchQueue
from workers.search.scheduler import QueryNotFoundError, SearchScheduler

router = APIRouter(prefix="/api/searches", tags=["searches"])


class ManualRunResponse(BaseModel):
    query_id: int
    job_id: str | None
    status: str


def get_scheduler(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SearchScheduler:
    return SearchScheduler(session_factory, ArqSearchQueue(request.app.state.arq))


@router.post(
    "/{query_id}/run",
    response_model=ManualRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_search_now(
    query_id: int,
    scheduler: SearchScheduler = Depends(get_scheduler),
) -> ManualRunResponse:
    """Queue an immediate run of a monitored query, ahead of scheduled ones."""
    try:
        job_id = await scheduler.trigger_manual_run(query_id)
    except QueryNotFoundError:
        raise HTTPException(status_code=404, detail=f"Monitored query {query_id} not found")
    return ManualRunResponse(
        query_id=query_id,
        job_id=job_id,
        status="queued" if job_id else "already_queued",
    )
