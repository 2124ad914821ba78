"""
Target actions — what a job actually does when it fires.

Every job type maps to one Action. Today that is only HTTP: a JSON POST
of the job payload to the job target.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from pingsched.core.errors import ActionExecutionError
from pingsched.scheduler.job import JobType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "PingPay-Scheduler/1.0"


class Action(ABC):
    """Performs a job's target action. Raises ActionExecutionError on failure."""

    @abstractmethod
    async def execute(self, target: str, payload: dict[str, Any] | None) -> None:
        ...

    async def close(self) -> None:
        """Release any held resources."""


class HttpAction(Action):
    """
    POSTs the payload as JSON to the target URL.

    Any non-2xx response, timeout, or transport error is a failure.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": self._user_agent,
                },
            )
        return self._client

    async def execute(self, target: str, payload: dict[str, Any] | None) -> None:
        logger.info(f"Making HTTP request to {target}")
        client = self._get_client()
        try:
            resp = await client.post(target, json=payload)
        except httpx.TimeoutException as e:
            raise ActionExecutionError(
                f"Request to {target} timed out after {self._timeout}s", target=target
            ) from e
        except httpx.HTTPError as e:
            raise ActionExecutionError(f"Request to {target} failed: {e}", target=target) from e

        if not resp.is_success:
            raise ActionExecutionError(
                f"Request failed with status code {resp.status_code}",
                target=target,
                status_code=resp.status_code,
                details={"body": resp.text[:500]},
            )
        logger.info(f"HTTP request completed with status {resp.status_code}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class ActionRegistry:
    """
    Maps job types to actions.

    Usage:
        actions = ActionRegistry()
        actions.register(JobType.HTTP, HttpAction(timeout=30))
        await actions.get("http").execute(url, payload)
    """

    def __init__(self) -> None:
        self._actions: dict[JobType, Action] = {}

    def register(self, job_type: JobType | str, action: Action) -> None:
        self._actions[JobType(job_type)] = action
        logger.debug(f"Action registered for job type {JobType(job_type).value}")

    def get(self, job_type: JobType | str) -> Action:
        try:
            return self._actions[JobType(job_type)]
        except (KeyError, ValueError):
            raise ActionExecutionError(
                f"Unsupported job type: {getattr(job_type, 'value', job_type)}",
                retryable=False,
            ) from None

    async def close(self) -> None:
        for action in self._actions.values():
            await action.close()
