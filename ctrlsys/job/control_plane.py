"""Completion reporting from a standalone timer job to the control plane."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Optional

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from ctrlsys.errors import ControlPlaneUnavailableError
from ctrlsys.job.status import JobStatus
from ctrlsys.service.completion_service import CompletionAck, CompletionReport

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10
CALL_TIMEOUT_SECONDS = 30


def build_report(status: JobStatus, completed_at: Optional[datetime] = None) -> CompletionReport:
    return CompletionReport(
        timer_id=status.timer_id,
        metadata=status.metadata,
        total_duration_seconds=status.elapsed_seconds(),
        completed_at=completed_at or datetime.now(UTC),
    )


class ControlPlaneClient:
    """POSTs one completion report; a single attempt, the caller decides what failure means."""

    def __init__(self, endpoint: str, *, token: Optional[str] = None):
        self.endpoint = endpoint.rstrip("/")
        self.token = token
        # separate ceilings: connecting may take 10 s, the call itself 30 s more
        self.timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=CONNECT_TIMEOUT_SECONDS,
            sock_read=CALL_TIMEOUT_SECONDS,
        )

    def completion_url(self, timer_id: str) -> str:
        return f"{self.endpoint}/api/control-plane/timers/{timer_id}/complete"

    async def send(self, report: CompletionReport) -> CompletionAck:
        url = self.completion_url(report.timer_id)
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        logger.info("[TimerJob] reporting completion timer_id=%s to %s", report.timer_id, url)
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, data=report.model_dump_json(), headers=headers) as response:
                    text = await response.text()
                    if response.status >= 400:
                        raise ControlPlaneUnavailableError(
                            f"Control plane rejected completion report: HTTP {response.status} {text[:200]}"
                        )
                    ack = CompletionAck.model_validate_json(text)
        except asyncio.TimeoutError as exc:
            raise ControlPlaneUnavailableError("Timeout reporting completion to control plane") from exc
        except aiohttp.ClientError as exc:
            raise ControlPlaneUnavailableError(f"Failed to connect to control plane: {exc}") from exc
        except PydanticValidationError as exc:
            raise ControlPlaneUnavailableError(f"Unreadable acknowledgement from control plane: {exc}") from exc

        if not ack.acknowledged:
            raise ControlPlaneUnavailableError("Control plane did not acknowledge timer completion")
        logger.info(
            "[TimerJob] completion acknowledged timer_id=%s duplicate=%s", report.timer_id, ack.duplicate
        )
        return ack
