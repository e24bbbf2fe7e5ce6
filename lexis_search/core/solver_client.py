"""
Async client for a 2Captcha-compatible remote solving service.

Uses the JSON task API: ``createTask`` submits a reCAPTCHA v2 job and
``getTaskResult`` is polled until the token is ready or the wait bound
elapses.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from lexis_search.core.errors import SolverError, SolverTimeout

logger = logging.getLogger("lexis.solver")

TASK_TYPE = "RecaptchaV2TaskProxyless"


class RemoteSolverClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.2captcha.com",
        poll_interval_s: float = 5.0,
        timeout_s: float = 120.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Solver API key required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._poll_interval_s = poll_interval_s
        self._timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        session = await self._get_session()
        async with session.post(f"{self._base_url}{path}", json=payload) as resp:
            return await resp.json(content_type=None)

    @staticmethod
    def _raise_for_error(data: dict[str, Any]) -> None:
        if data.get("errorId", 0) != 0:
            raise SolverError(
                str(data.get("errorCode") or "UNKNOWN"),
                str(data.get("errorDescription") or ""),
            )

    async def create_task(self, site_key: str, page_url: str) -> str:
        payload = {
            "clientKey": self._api_key,
            "task": {
                "type": TASK_TYPE,
                "websiteURL": page_url,
                "websiteKey": site_key,
            },
        }
        logger.info(f"[Solver] Submitting task (sitekey: {site_key[:12]}...)")
        data = await self._post("/createTask", payload)
        self._raise_for_error(data)
        task_id = data.get("taskId")
        if not task_id:
            raise SolverError("NO_TASK_ID", "createTask response carried no taskId")
        return str(task_id)

    async def get_result(self, task_id: str) -> Optional[str]:
        """Return the token when ready, None while the task is still processing."""
        data = await self._post("/getTaskResult", {"clientKey": self._api_key, "taskId": task_id})
        self._raise_for_error(data)
        if data.get("status") != "ready":
            return None
        solution = data.get("solution") or {}
        token = solution.get("gRecaptchaResponse") or solution.get("token")
        if not token:
            raise SolverError("EMPTY_SOLUTION", f"solution keys: {sorted(solution)}")
        return str(token)

    async def solve(self, site_key: str, page_url: str) -> str:
        """
        Submit a task and poll for its token.

        Raises:
            SolverError: the service reported an error.
            SolverTimeout: no token within the wait bound.
        """
        task_id = await self.create_task(site_key, page_url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_s

        while loop.time() < deadline:
            await asyncio.sleep(self._poll_interval_s)
            try:
                token = await self.get_result(task_id)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"[Solver] Poll failed for task {task_id}: {e!r}")
                continue
            if token:
                logger.info(f"[Solver] Task {task_id} solved")
                return token

        raise SolverTimeout(f"Task {task_id} not solved within {self._timeout_s:.0f}s")
