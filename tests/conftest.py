"""
Shared fixtures and small stand-ins for Playwright pages and locators.
"""

from __future__ import annotations

import re
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeout

from lexis_search.core.config import CaptchaConfig, FlowConfig
from lexis_search.core.context import RuntimeContext
from lexis_search.core.session import BrowserAttachment, SessionBinding


class FakeLocator:
    """Just enough of playwright's Locator for the flow and resolvers."""

    def __init__(
        self,
        name: str = "",
        visible: bool = True,
        count: int = 1,
        enabled: bool = True,
        tag: str = "INPUT",
        value: str = "",
        page: Optional["FakePage"] = None,
        navigate_to: Optional[str] = None,
    ) -> None:
        self.name = name
        self.visible = visible
        self._count = count
        self.enabled = enabled
        self.tag = tag
        self.value = value
        self.page = page
        self.navigate_to = navigate_to
        self.clicks = 0
        self.typed: list[str] = []
        self.selected: list[str] = []

    @property
    def first(self) -> "FakeLocator":
        return self

    def or_(self, other: "FakeLocator") -> "FakeLocator":
        return self if self._count else other

    def locator(self, selector: str) -> "FakeLocator":
        return self

    async def count(self) -> int:
        return self._count

    async def click(self, **kwargs: Any) -> None:
        self.clicks += 1
        if self.page is not None and self.navigate_to:
            self.page.url = self.navigate_to

    async def wait_for(self, state: str = "visible", timeout: Optional[int] = None) -> None:
        if not (self._count and self.visible):
            raise PlaywrightTimeout(f"Timeout {timeout}ms waiting for {self.name!r}")

    async def is_visible(self) -> bool:
        return bool(self._count and self.visible)

    async def is_enabled(self) -> bool:
        return self.enabled

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script.strip() == "(el) => el.tagName":
            return self.tag
        return self.value

    async def fill(self, value: str, **kwargs: Any) -> None:
        self.value = value

    async def press_sequentially(self, value: str, delay: int = 0) -> None:
        self.typed.append(value)
        self.value = value

    async def select_option(self, label: str, **kwargs: Any) -> None:
        self.selected.append(label)
        self.value = label


class FakePage:
    """A page whose buttons and links are looked up by visible text."""

    def __init__(self, url: str = "about:blank") -> None:
        self.url = url
        self.controls: dict[str, FakeLocator] = {}
        self.alert = FakeLocator("alert", count=0, visible=False)
        self.goto = AsyncMock(side_effect=self._goto)
        self.wait_for_load_state = AsyncMock()
        self.screenshot = AsyncMock()
        self.evaluate = AsyncMock(return_value="")
        self.keyboard = MagicMock()
        self.keyboard.press = AsyncMock()

    async def _goto(self, url: str, **kwargs: Any) -> None:
        self.url = url

    def add_control(self, text: str, **kwargs: Any) -> FakeLocator:
        control = FakeLocator(text, page=self, **kwargs)
        self.controls[text] = control
        return control

    def get_by_role(self, role: str, name: Any = None, **kwargs: Any) -> FakeLocator:
        for text, control in self.controls.items():
            if name is None:
                return control
            if isinstance(name, re.Pattern) and name.search(text):
                return control
            if name == text:
                return control
        return FakeLocator(str(name), count=0, visible=False)

    def locator(self, selector: str) -> FakeLocator:
        return self.alert


PORTAL_URL = "https://portal.example.com/"
CART_URL = "https://portal.example.com/cart"


@pytest.fixture
def flow_config() -> FlowConfig:
    return FlowConfig(
        portal_url=PORTAL_URL,
        captcha=CaptchaConfig(settle_ms=0, solver_poll_interval_s=0),
        jurisdiction_settle_ms=0,
        terms_timeout_ms=10,
        results_timeout_ms=10,
    )


@pytest.fixture
def fake_page() -> FakePage:
    page = FakePage()
    page.add_control("Start Search")
    page.add_control("Search")
    page.add_control("I Agree")
    page.add_control("Add to Cart", navigate_to=CART_URL)
    return page


@pytest.fixture
def binding() -> SessionBinding:
    return SessionBinding(session_id="sess-1", connect_url="wss://connect.example.com?sessionId=sess-1")


@pytest.fixture
def attachment(binding: SessionBinding, fake_page: FakePage) -> BrowserAttachment:
    return BrowserAttachment(binding=binding, page=fake_page, browser=AsyncMock())


@pytest.fixture
def provisioner(binding: SessionBinding) -> MagicMock:
    mock = MagicMock()
    mock.create = AsyncMock(return_value=binding)
    mock.retrieve = AsyncMock(return_value=binding)
    mock.live_view_url = AsyncMock(return_value="https://live.example.com/sess-1")
    mock.release = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def runtime(flow_config: FlowConfig, provisioner: MagicMock, attachment: BrowserAttachment) -> RuntimeContext:
    return RuntimeContext(
        config=flow_config,
        provisioner=provisioner,
        connector=AsyncMock(return_value=attachment),
    )
