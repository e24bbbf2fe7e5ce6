"""
FlowController - the records-search state machine.

    Init -> Navigated -> JurisdictionSelected -> FormFilled -> AwaitingCaptcha
         -> CaptchaResolved -> Searched -> TermsHandled -> ResultsChecked -> AddedToCart
    TermsHandled -> NoResults | ValidationFailed

Any non-terminal state may drop to Failed. AwaitingCaptcha is the only state a
flow is suspended in: ``begin`` stops there and leaves the remote browser
running so an operator can solve the CAPTCHA on the live session, and
``resume`` picks it up again by session id. ``run`` does both in one call,
with automated CAPTCHA solving in between.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from lexis_search.core.captcha import CaptchaOutcome, CaptchaResolver
from lexis_search.core.context import RuntimeContext
from lexis_search.core.criteria import SearchRequest, validate_request
from lexis_search.core.element_resolver import ElementResolver, ResolverTiming, exact_pattern
from lexis_search.core.errors import (
    CaptchaUnresolved,
    FlowError,
    InvalidCriteria,
    NavigationTimeout,
    SelectionFailure,
    SessionUnavailable,
)
from lexis_search.core.session import BrowserAttachment
from lexis_search.core.timeline import FlowTimeline
from lexis_search.core.waits import WaitManager

logger = logging.getLogger("lexis.flow")

# CDP endpoints carry API keys or signing tokens in their query string
_ENDPOINT_RE = re.compile(r"wss?://\S+")


def error_detail(exc: BaseException, connect_url: Optional[str] = None) -> str:
    """First line of an exception message with any connect endpoint masked."""
    text = str(exc).strip()
    text = text.splitlines()[0].strip() if text else type(exc).__name__
    if connect_url:
        text = text.replace(connect_url, "<connect-url>")
    return _ENDPOINT_RE.sub("<connect-url>", text)


class FlowState(str, Enum):
    INIT = "Init"
    NAVIGATED = "Navigated"
    JURISDICTION_SELECTED = "JurisdictionSelected"
    FORM_FILLED = "FormFilled"
    AWAITING_CAPTCHA = "AwaitingCaptcha"
    CAPTCHA_RESOLVED = "CaptchaResolved"
    SEARCHED = "Searched"
    TERMS_HANDLED = "TermsHandled"
    RESULTS_CHECKED = "ResultsChecked"
    ADDED_TO_CART = "AddedToCart"
    NO_RESULTS = "NoResults"
    VALIDATION_FAILED = "ValidationFailed"
    FAILED = "Failed"


TERMINAL_STATES = frozenset(
    {FlowState.ADDED_TO_CART, FlowState.NO_RESULTS, FlowState.VALIDATION_FAILED, FlowState.FAILED}
)

# Failed is reachable from every non-terminal state and is not listed.
TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.INIT: frozenset({FlowState.NAVIGATED, FlowState.VALIDATION_FAILED}),
    FlowState.NAVIGATED: frozenset({FlowState.JURISDICTION_SELECTED}),
    FlowState.JURISDICTION_SELECTED: frozenset({FlowState.FORM_FILLED}),
    FlowState.FORM_FILLED: frozenset({FlowState.AWAITING_CAPTCHA}),
    FlowState.AWAITING_CAPTCHA: frozenset({FlowState.CAPTCHA_RESOLVED}),
    FlowState.CAPTCHA_RESOLVED: frozenset({FlowState.SEARCHED}),
    FlowState.SEARCHED: frozenset({FlowState.TERMS_HANDLED}),
    FlowState.TERMS_HANDLED: frozenset(
        {FlowState.RESULTS_CHECKED, FlowState.NO_RESULTS, FlowState.VALIDATION_FAILED}
    ),
    FlowState.RESULTS_CHECKED: frozenset({FlowState.ADDED_TO_CART}),
}


class FlowStep(str, Enum):
    READY_FOR_CAPTCHA = "ready_for_captcha"
    CAPTCHA_REQUIRED = "captcha_required"
    NO_RESULTS_OR_VALIDATION = "no_results_or_validation"
    ADDED_TO_CART = "added_to_cart"
    FAILED = "failed"


@dataclass
class FlowResult:
    """Outcome of one begin/resume/run call."""
    ok: bool
    state: FlowState
    step: FlowStep
    status: int = 200
    session_id: Optional[str] = None
    page_url: Optional[str] = None
    cart_url: Optional[str] = None
    live_view_url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    captcha: Optional[CaptchaOutcome] = None
    timeline: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape returned to HTTP and MCP callers."""
        if not self.ok:
            payload: dict[str, Any] = {
                "ok": False,
                "error": self.error,
                "errorKind": self.error_kind,
                "state": self.state.value,
            }
        else:
            payload = {"ok": True, "step": self.step.value, "state": self.state.value}

        optional = {
            "sessionId": self.session_id,
            "pageUrl": self.page_url,
            "cartUrl": self.cart_url,
            "liveViewUrl": self.live_view_url,
        }
        payload.update({key: value for key, value in optional.items() if value})
        if self.captcha is not None:
            payload["captcha"] = self.captcha.to_dict()
        return payload


@dataclass
class _FlowRun:
    state: FlowState = FlowState.INIT
    session_id: Optional[str] = None
    attachment: Optional[BrowserAttachment] = None
    timeline: FlowTimeline = field(default_factory=FlowTimeline)
    # set once a remote session exists for this run and must be released
    provisioned: bool = False
    released: bool = False

    @property
    def page(self) -> Page:
        if self.attachment is None:
            raise RuntimeError("Flow has no browser attached")
        return self.attachment.page

    def page_url(self) -> Optional[str]:
        if self.attachment is None:
            return None
        try:
            return self.attachment.page.url
        except Exception:
            return None


class FlowController:
    """
    Drives the portal's search form for one session per call.

    Collaborators come from the RuntimeContext; the resolver and CAPTCHA
    resolver can be swapped for tests.
    """

    def __init__(
        self,
        context: RuntimeContext,
        resolver: ElementResolver | None = None,
        captcha: CaptchaResolver | None = None,
    ) -> None:
        self._context = context
        self._config = context.config
        self._layout = context.config.layout
        self._resolver = resolver or ElementResolver(
            ResolverTiming(
                option_timeout_ms=self._config.option_timeout_ms,
                type_delay_ms=self._config.type_delay_ms,
            )
        )
        self._captcha = captcha or CaptchaResolver(
            config=self._config.captcha,
            solver=context.solver,
            submit_text=self._layout.search_text,
        )

    # ─── State machine ───────────────────────

    def _transition(self, run: _FlowRun, target: FlowState, **metadata: Any) -> None:
        if run.state in TERMINAL_STATES:
            raise RuntimeError(f"Flow already terminal in {run.state.value}")
        if target != FlowState.FAILED and target not in TRANSITIONS.get(run.state, frozenset()):
            raise RuntimeError(f"Illegal transition {run.state.value} -> {target.value}")
        logger.info(f"[Flow] {run.session_id or '-'}: {run.state.value} -> {target.value}")
        run.state = target
        run.timeline.event(target.value, metadata)

    # ─── Page helpers ────────────────────────

    def _waits(self, page: Page) -> WaitManager:
        return WaitManager(
            page,
            navigation_timeout_ms=self._config.navigation_timeout_ms,
            settle_timeout_ms=self._config.settle_timeout_ms,
        )

    @staticmethod
    def _control(page: Page, text: str | re.Pattern[str]) -> Locator:
        name = exact_pattern(text) if isinstance(text, str) else text
        return page.get_by_role("button", name=name).or_(page.get_by_role("link", name=name)).first

    async def _click(self, page: Page, text: str) -> None:
        await self._control(page, text).click(timeout=self._config.click_timeout_ms)

    async def _select(self, page: Page, intent: str, value: str) -> None:
        if not await self._resolver.select(page, intent, value):
            raise SelectionFailure(intent, value)

    async def _dismiss_terms(self, page: Page, waits: WaitManager) -> bool:
        choices = "|".join(re.escape(text) for text in self._layout.terms_accept_texts)
        accept = self._control(page, re.compile(rf"^\s*(?:{choices})\s*$", re.IGNORECASE))
        if not await waits.wait_visible(accept, self._config.terms_timeout_ms):
            logger.info("[Flow] No terms dialog shown")
            return False
        await accept.click(timeout=self._config.click_timeout_ms)
        await waits.settle()
        return True

    async def _has_validation_error(self, page: Page) -> bool:
        alert = page.locator(self._layout.validation_selector).first
        try:
            return bool(await alert.count()) and await alert.is_visible()
        except Exception:
            return False

    async def _capture(self, run: _FlowRun, label: str) -> None:
        if self._context.artifacts is None or run.attachment is None:
            return
        try:
            await self._context.artifacts.save_screenshot(run.attachment.page, run.session_id or "unknown", label)
        except OSError as e:
            logger.warning(f"[Flow] Could not store screenshot {label}: {e}")

    async def _live_view(self, session_id: Optional[str]) -> Optional[str]:
        lookup = getattr(self._context.provisioner, "live_view_url", None)
        if not session_id or lookup is None:
            return None
        try:
            return await lookup(session_id)
        except Exception as e:
            logger.warning(f"[Flow] Live view unavailable for {session_id}: {e}")
            return None

    # ─── Failure handling ────────────────────

    @staticmethod
    def _convert(exc: BaseException) -> FlowError:
        if isinstance(exc, FlowError):
            return exc
        if isinstance(exc, PlaywrightTimeout):
            return NavigationTimeout(error_detail(exc))
        return FlowError(error_detail(exc))

    async def _release(self, run: _FlowRun) -> None:
        """Drop the CDP connection and ask the host to end the remote session."""
        if run.attachment is not None:
            await run.attachment.close()
        if not run.provisioned or run.released or not run.session_id:
            return
        run.released = True
        try:
            await self._context.provisioner.release(run.session_id)
        except Exception as e:
            logger.warning(f"[Flow] Release of {run.session_id} failed: {error_detail(e)}")

    async def _fail(self, run: _FlowRun, exc: BaseException) -> FlowResult:
        error = self._convert(exc)
        if error is exc or isinstance(exc, PlaywrightError):
            logger.warning(f"[Flow] {run.session_id or '-'} failed in {run.state.value}: {error.kind}: {error.message}")
        else:
            logger.exception(f"[Flow] {run.session_id or '-'} failed in {run.state.value}: {error.message}")

        page_url = run.page_url()
        try:
            await self._capture(run, f"failed_{run.state.value}")
        finally:
            await self._release(run)
        if run.state not in TERMINAL_STATES:
            self._transition(run, FlowState.FAILED, error=error.kind)

        return FlowResult(
            ok=False,
            state=FlowState.FAILED,
            step=FlowStep.FAILED,
            status=error.status,
            session_id=run.session_id,
            page_url=page_url,
            error=error.message,
            error_kind=error.kind,
            timeline=run.timeline.snapshot(),
        )

    def _invalid(self, run: _FlowRun, error: InvalidCriteria) -> FlowResult:
        logger.info(f"[Flow] Rejected request: {error.message}")
        self._transition(run, FlowState.VALIDATION_FAILED, error=error.kind)
        return FlowResult(
            ok=False,
            state=FlowState.VALIDATION_FAILED,
            step=FlowStep.FAILED,
            status=error.status,
            error=error.message,
            error_kind=error.kind,
            timeline=run.timeline.snapshot(),
        )

    # ─── Phases ──────────────────────────────

    async def _prepare(self, run: _FlowRun, request: SearchRequest) -> None:
        """Init -> AwaitingCaptcha on a freshly provisioned session."""
        binding = await self._context.provisioner.create(self._config.browserbase.project_id)
        run.session_id = binding.session_id
        run.provisioned = True
        try:
            run.attachment = await self._context.connector(binding)
        except Exception as e:
            raise FlowError(
                f"Could not attach to session {binding.session_id}: {error_detail(e, binding.connect_url)}"
            ) from e
        page = run.page
        waits = self._waits(page)

        await waits.goto(self._config.portal_url)
        self._transition(run, FlowState.NAVIGATED, url=page.url)

        await self._select(page, self._layout.state_label, request.jurisdiction.state)
        # the jurisdiction control is enabled only after the state change lands
        await waits.pause(self._config.jurisdiction_settle_ms)
        await self._select(page, self._layout.jurisdiction_label, request.jurisdiction.jurisdiction)
        self._transition(run, FlowState.JURISDICTION_SELECTED)

        await self._click(page, self._layout.start_search_text)
        await waits.settle()

        for label, value in request.criteria.form_fields():
            if not await self._resolver.fill(page, label, value):
                raise SelectionFailure(label, value)
        self._transition(run, FlowState.FORM_FILLED, criteria=request.criteria.kind.value)
        self._transition(run, FlowState.AWAITING_CAPTCHA, url=page.url)

    async def _complete(self, run: _FlowRun) -> FlowResult:
        """CaptchaResolved -> terminal."""
        page = run.page
        waits = self._waits(page)

        await self._click(page, self._layout.search_text)
        await waits.settle()
        self._transition(run, FlowState.SEARCHED)

        dialog = await self._dismiss_terms(page, waits)
        self._transition(run, FlowState.TERMS_HANDLED, dialog=dialog)

        indicator = self._control(page, self._layout.results_indicator_text)
        if not await waits.wait_visible(indicator, self._config.results_timeout_ms):
            state = FlowState.VALIDATION_FAILED if await self._has_validation_error(page) else FlowState.NO_RESULTS
            self._transition(run, state, url=page.url)
            return FlowResult(
                ok=True,
                state=state,
                step=FlowStep.NO_RESULTS_OR_VALIDATION,
                session_id=run.session_id,
                page_url=page.url,
                timeline=run.timeline.snapshot(),
            )

        self._transition(run, FlowState.RESULTS_CHECKED)
        await self._click(page, self._layout.add_to_cart_text)
        await waits.settle()
        self._transition(run, FlowState.ADDED_TO_CART, url=page.url)
        return FlowResult(
            ok=True,
            state=FlowState.ADDED_TO_CART,
            step=FlowStep.ADDED_TO_CART,
            session_id=run.session_id,
            cart_url=page.url,
            timeline=run.timeline.snapshot(),
        )

    async def _reattach(self, session_id: str) -> BrowserAttachment:
        attachment = self._context.registry.pop(session_id)
        if attachment is not None:
            logger.info(f"[Flow] Reusing live connection for {session_id}")
            return attachment
        binding = await self._context.provisioner.retrieve(session_id)
        try:
            return await self._context.connector(binding)
        except Exception as e:
            raise SessionUnavailable(session_id, detail=error_detail(e, binding.connect_url)) from e

    # ─── Entry points ────────────────────────

    async def begin(self, raw: Mapping[str, Any]) -> FlowResult:
        """
        Run the flow up to the CAPTCHA and suspend.

        The browser connection stays open on success; it is closed on any
        failure.
        """
        run = _FlowRun()
        try:
            request = validate_request(raw)
        except InvalidCriteria as e:
            return self._invalid(run, e)

        try:
            await self._prepare(run, request)
        except Exception as e:
            return await self._fail(run, e)

        self._context.registry.put(run.attachment)
        return FlowResult(
            ok=True,
            state=run.state,
            step=FlowStep.READY_FOR_CAPTCHA,
            session_id=run.session_id,
            page_url=run.page_url(),
            live_view_url=await self._live_view(run.session_id),
            timeline=run.timeline.snapshot(),
        )

    async def resume(self, session_id: str) -> FlowResult:
        """
        Reattach to a suspended session and finish the search.

        Always ends in a terminal state and always closes the connection.
        """
        run = _FlowRun(state=FlowState.AWAITING_CAPTCHA, session_id=session_id or None)
        run.timeline.event(FlowState.AWAITING_CAPTCHA.value, {"resumed": True})
        try:
            if not session_id:
                raise InvalidCriteria("sessionId required")
            run.attachment = await self._reattach(session_id)
            run.provisioned = True

            cleared = await self._captcha.is_cleared(run.page)
            if not cleared:
                if self._config.require_captcha_cleared_on_resume:
                    raise CaptchaUnresolved(f"CAPTCHA not solved for session {session_id}")
                logger.warning(f"[Flow] {session_id}: CAPTCHA not confirmed cleared, submitting anyway")
            self._transition(run, FlowState.CAPTCHA_RESOLVED, verified=cleared)

            return await self._complete(run)
        except Exception as e:
            return await self._fail(run, e)
        finally:
            await self._release(run)

    async def run(self, raw: Mapping[str, Any], use_remote_solver: Optional[bool] = None) -> FlowResult:
        """
        Single-call variant: begin, automated CAPTCHA solving, then resume.

        When no automated strategy clears the CAPTCHA the flow is suspended
        exactly like ``begin`` and the caller gets a ``captcha_required`` step
        with the session id to resume after an operator solves it.
        """
        run = _FlowRun()
        try:
            request = validate_request(raw)
        except InvalidCriteria as e:
            return self._invalid(run, e)

        suspended = False
        try:
            await self._prepare(run, request)
            outcome = await self._captcha.resolve(run.page, allow_remote=use_remote_solver)
            if not outcome.resolved:
                await self._capture(run, "captcha_required")
                self._context.registry.put(run.attachment)
                suspended = True
                return FlowResult(
                    ok=True,
                    state=run.state,
                    step=FlowStep.CAPTCHA_REQUIRED,
                    session_id=run.session_id,
                    page_url=run.page_url(),
                    live_view_url=await self._live_view(run.session_id),
                    captcha=outcome,
                    timeline=run.timeline.snapshot(),
                )

            self._transition(run, FlowState.CAPTCHA_RESOLVED, method=outcome.method.value)
            result = await self._complete(run)
            result.captcha = outcome
            return result
        except Exception as e:
            return await self._fail(run, e)
        finally:
            if not suspended:
                await self._release(run)
