"""
CaptchaResolver - clears the portal's reCAPTCHA checkpoint or reports that a
human has to.

Strategies run in order of cost, each only if the previous one did not
confirm success:

1. checkbox: click the anchor inside the embedded reCAPTCHA frame
2. keyboard: focus-advance presses followed by an activation key, for widgets
   that ignore synthetic clicks in automated browsers
3. remote-solver: token from the remote solving service, injected into the
   page with the page's own callback invoked (opt-in, needs an API key)

``resolve`` never raises. Every failure degrades to the next strategy and
finally to ``human-required``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Page

from lexis_search.core.config import CaptchaConfig
from lexis_search.core.element_resolver import exact_pattern
from lexis_search.core.errors import FlowError
from lexis_search.core.solver_client import RemoteSolverClient

logger = logging.getLogger("lexis.captcha")


class CaptchaMethod(str, Enum):
    CHECKBOX = "checkbox"
    KEYBOARD = "keyboard"
    REMOTE_SOLVER = "remote-solver"
    HUMAN_REQUIRED = "human-required"


@dataclass(frozen=True)
class CaptchaOutcome:
    resolved: bool
    method: CaptchaMethod
    attempted: tuple[str, ...] = ()
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved": self.resolved,
            "method": self.method.value,
            "attempted": list(self.attempted),
            "detail": self.detail,
        }


TOKEN_JS = """
(selector) => {
    for (const el of document.querySelectorAll(selector)) {
        if (el.value && el.value.trim().length > 0) return el.value;
    }
    return '';
}
"""

SITE_KEY_JS = """
(frameSelector) => {
    const host = document.querySelector('[data-sitekey]');
    if (host) return host.getAttribute('data-sitekey');
    const frame = document.querySelector(frameSelector);
    if (frame && frame.src) {
        try { return new URL(frame.src).searchParams.get('k'); } catch (e) { return null; }
    }
    return null;
}
"""

INJECT_TOKEN_JS = """
(token) => {
    document.querySelectorAll('textarea[name="g-recaptcha-response"], #g-recaptcha-response').forEach((el) => {
        el.value = token;
        el.innerHTML = token;
        el.dispatchEvent(new Event('input', { bubbles: true }));
        el.dispatchEvent(new Event('change', { bubbles: true }));
    });

    const invoke = (cb) => {
        if (typeof cb === 'string') cb = window[cb];
        if (typeof cb === 'function') { cb(token); return true; }
        return false;
    };

    const host = document.querySelector('[data-sitekey][data-callback]');
    if (host && invoke(host.getAttribute('data-callback'))) return true;

    const cfg = window.___grecaptcha_cfg;
    if (!cfg || !cfg.clients) return false;
    const seen = new Set();
    const walk = (node, depth) => {
        if (!node || typeof node !== 'object' || depth > 4 || seen.has(node)) return false;
        seen.add(node);
        for (const key of Object.keys(node)) {
            if (key === 'callback' && invoke(node[key])) return true;
            if (walk(node[key], depth + 1)) return true;
        }
        return false;
    };
    return Object.values(cfg.clients).some((client) => walk(client, 0));
}
"""


class CaptchaResolver:
    def __init__(
        self,
        config: CaptchaConfig | None = None,
        solver: Optional[RemoteSolverClient] = None,
        submit_text: str = "Search",
    ) -> None:
        self._config = config or CaptchaConfig()
        self._solver = solver
        self._submit_text = submit_text

    @property
    def remote_available(self) -> bool:
        return self._solver is not None

    async def _settle(self) -> None:
        if self._config.settle_ms > 0:
            await asyncio.sleep(self._config.settle_ms / 1000.0)

    async def is_cleared(self, page: Page) -> bool:
        """True when a response token is present or the submit control is enabled."""
        try:
            token = await page.evaluate(TOKEN_JS, self._config.response_selector)
            if token:
                return True
        except Exception as e:
            logger.debug(f"[Captcha] Token probe failed: {e}")

        try:
            submit = page.get_by_role("button", name=exact_pattern(self._submit_text)).first
            if await submit.count() and await submit.is_enabled():
                return True
        except Exception as e:
            logger.debug(f"[Captcha] Submit probe failed: {e}")
        return False

    async def _checkbox(self, page: Page) -> bool:
        anchor = page.frame_locator(self._config.anchor_frame_selector).first.locator(
            self._config.anchor_selector
        )
        await anchor.wait_for(state="visible", timeout=self._config.visible_timeout_ms)
        await anchor.click()
        await self._settle()
        return await self.is_cleared(page)

    async def _keyboard(self, page: Page) -> bool:
        for _ in range(self._config.keyboard_tab_presses):
            await page.keyboard.press("Tab")
        await page.keyboard.press(self._config.activation_key)
        await self._settle()
        return await self.is_cleared(page)

    async def _remote_solver(self, page: Page) -> bool:
        if self._solver is None:
            return False
        site_key = await page.evaluate(SITE_KEY_JS, self._config.anchor_frame_selector)
        if not site_key:
            logger.warning("[Captcha] No site key found on page")
            return False
        token = await self._solver.solve(str(site_key), page.url)
        callback_invoked = await page.evaluate(INJECT_TOKEN_JS, token)
        logger.info(f"[Captcha] Token injected (callback invoked: {bool(callback_invoked)})")
        await self._settle()
        return await self.is_cleared(page)

    async def resolve(self, page: Page, allow_remote: Optional[bool] = None) -> CaptchaOutcome:
        """
        Try each strategy in turn.

        Args:
            page: Page showing the CAPTCHA
            allow_remote: Opt in to the paid remote solver; defaults to config

        Returns:
            CaptchaOutcome, ``human-required`` when nothing confirmed success
        """
        if allow_remote is None:
            allow_remote = self._config.remote_solver_default

        strategies: list[tuple[CaptchaMethod, Callable[[Page], Awaitable[bool]]]] = [
            (CaptchaMethod.CHECKBOX, self._checkbox),
            (CaptchaMethod.KEYBOARD, self._keyboard),
        ]
        if allow_remote and self.remote_available:
            strategies.append((CaptchaMethod.REMOTE_SOLVER, self._remote_solver))

        attempted: list[str] = []
        detail = ""
        for method, strategy in strategies:
            attempted.append(method.value)
            try:
                if await strategy(page):
                    logger.info(f"[Captcha] Cleared via {method.value}")
                    return CaptchaOutcome(resolved=True, method=method, attempted=tuple(attempted))
                logger.info(f"[Captcha] {method.value} did not confirm success")
            except FlowError as e:
                detail = f"{e.code}: {e.message}"
                logger.warning(f"[Captcha] {method.value} failed: {detail}")
            except Exception as e:
                detail = str(e)
                logger.warning(f"[Captcha] {method.value} failed: {e}")

        logger.warning("[Captcha] Automated strategies exhausted, human required")
        return CaptchaOutcome(
            resolved=False,
            method=CaptchaMethod.HUMAN_REQUIRED,
            attempted=tuple(attempted),
            detail=detail,
        )
