"""Receiver for completion reports sent by standalone timer jobs."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from ctrlsys.interfaces.api.auth import require_api_token
from ctrlsys.service.completion_service import (
    CompletionAck,
    CompletionRecord,
    CompletionReport,
    CompletionService,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/control-plane",
    tags=["Control plane"],
    dependencies=[Depends(require_api_token)],
)


def get_completion_service(request: Request) -> CompletionService:
    return CompletionService(request.app.state.store_provider.completions)


@router.post(
    "/timers/{timer_id}/complete",
    response_model=CompletionAck,
    summary="Acknowledge a finished standalone timer (idempotent)",
)
async def report_timer_complete(
    timer_id: str,
    report: CompletionReport,
    svc: CompletionService = Depends(get_completion_service),
):
    return await svc.acknowledge(timer_id, report)


@router.get("/completions", response_model=List[CompletionRecord])
async def list_completions(svc: CompletionService = Depends(get_completion_service)):
    return await svc.list_completions()


@router.get("/completions/{timer_id}", response_model=CompletionRecord)
async def get_completion(timer_id: str, svc: CompletionService = Depends(get_completion_service)):
    return await svc.get(timer_id)
