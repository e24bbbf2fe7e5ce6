"""
Remote browser sessions.

A SessionBinding ties an opaque session id to the CDP connect URL of a
browser hosted by Browserbase. ``begin`` provisions one and leaves it running;
``resume`` looks it up again by id and reattaches to the same browser state.
Connect URLs carry credentials and stay in process memory only.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol
from urllib.parse import urlencode

import aiohttp
from playwright.async_api import Browser, Page, Playwright, async_playwright

from lexis_search.core.config import BrowserbaseConfig
from lexis_search.core.errors import FlowError, SessionUnavailable

logger = logging.getLogger("lexis.session")


@dataclass(frozen=True)
class SessionBinding:
    session_id: str
    connect_url: str = field(repr=False)


class SessionProvisioner(Protocol):
    async def create(self, project_id: Optional[str] = None) -> SessionBinding: ...

    async def retrieve(self, session_id: str) -> SessionBinding: ...

    async def live_view_url(self, session_id: str) -> Optional[str]: ...

    async def release(self, session_id: str) -> bool: ...


class BrowserbaseProvisioner:
    """Creates and looks up Browserbase sessions over its REST API."""

    def __init__(self, config: BrowserbaseConfig, session: Optional[aiohttp.ClientSession] = None) -> None:
        if not config.api_key:
            raise ValueError("Browserbase API key required. Set BROWSERBASE_API_KEY.")
        self._config = config
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_s),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> tuple[int, dict[str, Any]]:
        session = await self._get_session()
        headers = {"X-BB-API-Key": self._config.api_key or "", "Content-Type": "application/json"}
        url = f"{self._config.api_url.rstrip('/')}{path}"
        async with session.request(method, url, json=payload, headers=headers) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = {}
            return resp.status, data if isinstance(data, dict) else {}

    def _default_connect_url(self, session_id: str) -> str:
        query = urlencode({"apiKey": self._config.api_key, "sessionId": session_id})
        return f"{self._config.connect_url}?{query}"

    async def create(self, project_id: Optional[str] = None) -> SessionBinding:
        project = project_id or self._config.project_id
        if not project:
            raise ValueError("Browserbase project id required. Set BROWSERBASE_PROJECT_ID.")
        payload: dict[str, Any] = {"projectId": project}
        if self._config.keep_alive:
            payload["keepAlive"] = True

        status, data = await self._request("POST", "/v1/sessions", payload)
        if status >= 400 or not data.get("id"):
            raise FlowError(f"Browserbase session create failed ({status}): {data.get('message', '')}")

        session_id = str(data["id"])
        logger.info(f"[Session] Created {session_id}")
        return SessionBinding(
            session_id=session_id,
            connect_url=data.get("connectUrl") or self._default_connect_url(session_id),
        )

    async def retrieve(self, session_id: str) -> SessionBinding:
        """
        Look up a running session.

        Raises:
            SessionUnavailable: unknown id, or the session is no longer running.
        """
        status, data = await self._request("GET", f"/v1/sessions/{session_id}")
        if status in (400, 404, 422):
            raise SessionUnavailable(session_id)
        if status >= 400:
            raise FlowError(f"Browserbase session lookup failed ({status})")

        state = str(data.get("status", "RUNNING")).upper()
        if state != "RUNNING":
            raise SessionUnavailable(session_id, detail=f"status {state}")

        return SessionBinding(
            session_id=session_id,
            connect_url=data.get("connectUrl") or self._default_connect_url(session_id),
        )

    async def live_view_url(self, session_id: str) -> Optional[str]:
        """URL an operator can open to drive the live session by hand."""
        try:
            status, data = await self._request("GET", f"/v1/sessions/{session_id}/debug")
        except aiohttp.ClientError as e:
            logger.warning(f"[Session] Live view lookup failed for {session_id}: {e}")
            return None
        if status >= 400:
            return None
        return data.get("debuggerFullscreenUrl") or data.get("debuggerUrl")

    async def release(self, session_id: str) -> bool:
        """
        End a keep-alive session on the host.

        Closing the CDP connection alone leaves a keep-alive browser running
        until the host's own timeout.
        """
        payload = {"status": "REQUEST_RELEASE", "projectId": self._config.project_id}
        try:
            status, data = await self._request("POST", f"/v1/sessions/{session_id}", payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"[Session] Release request failed for {session_id}: {e}")
            return False
        if status >= 400:
            logger.warning(f"[Session] Release of {session_id} rejected ({status}): {data.get('message', '')}")
            return False
        logger.info(f"[Session] Released {session_id}")
        return True


@dataclass
class BrowserAttachment:
    """A live CDP connection to a session's browser."""
    binding: SessionBinding
    page: Page
    browser: Optional[Browser] = None
    playwright: Optional[Playwright] = None
    closed: bool = False

    @property
    def session_id(self) -> str:
        return self.binding.session_id

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            if self.browser:
                await self.browser.close()  # disconnects CDP
        except Exception as e:
            logger.debug(f"[Session] Browser close failed for {self.session_id}: {e}")
        try:
            if self.playwright:
                await self.playwright.stop()
        except Exception as e:
            logger.debug(f"[Session] Playwright stop failed for {self.session_id}: {e}")
        logger.info(f"[Session] Connection to {self.session_id} closed")


Connector = Callable[[SessionBinding], Awaitable[BrowserAttachment]]


async def connect_over_cdp(binding: SessionBinding, default_timeout_ms: int = 30_000) -> BrowserAttachment:
    """Attach Playwright to a remote browser, reusing its first context and page."""
    pw = await async_playwright().start()
    try:
        browser = await pw.chromium.connect_over_cdp(binding.connect_url)
        contexts = browser.contexts
        context = contexts[0] if contexts else await browser.new_context()
        pages = context.pages
        page = pages[0] if pages else await context.new_page()
    except Exception:
        await pw.stop()
        raise

    page.set_default_timeout(default_timeout_ms)
    logger.info(f"[Session] Attached to {binding.session_id}")
    return BrowserAttachment(binding=binding, page=page, browser=browser, playwright=pw)


class SessionRegistry:
    """In-process map of suspended flows' live connections, keyed by session id."""

    def __init__(self) -> None:
        self._attachments: dict[str, BrowserAttachment] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._attachments

    def __len__(self) -> int:
        return len(self._attachments)

    def put(self, attachment: BrowserAttachment) -> None:
        self._attachments[attachment.session_id] = attachment

    def pop(self, session_id: str) -> Optional[BrowserAttachment]:
        attachment = self._attachments.pop(session_id, None)
        if attachment is not None and attachment.closed:
            return None
        return attachment

    async def close_all(self) -> None:
        attachments = list(self._attachments.values())
        self._attachments.clear()
        for attachment in attachments:
            await attachment.close()
