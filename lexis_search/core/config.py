"""Configuration for the records-search flow, loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


DEFAULT_PORTAL_URL = "https://buycrash.lexisnexisrisk.com/"


@dataclass(frozen=True)
class PortalLayout:
    """Visible texts the flow looks for on the portal."""
    state_label: str = "State"
    jurisdiction_label: str = "Jurisdiction"
    start_search_text: str = "Start Search"
    search_text: str = "Search"
    terms_accept_texts: tuple[str, ...] = ("I Agree", "Agree", "I Accept", "Accept")
    results_indicator_text: str = "Add to Cart"
    add_to_cart_text: str = "Add to Cart"
    validation_selector: str = "[role='alert'], .validation-summary-errors, .field-validation-error"


@dataclass(frozen=True)
class CaptchaConfig:
    anchor_frame_selector: str = "iframe[src*='recaptcha/api2/anchor'], iframe[title='reCAPTCHA']"
    anchor_selector: str = "#recaptcha-anchor"
    response_selector: str = "textarea[name='g-recaptcha-response'], #g-recaptcha-response"
    visible_timeout_ms: int = 6_000
    settle_ms: int = 2_000
    keyboard_tab_presses: int = 3
    activation_key: str = "Space"

    # Remote solver (2Captcha-compatible createTask API)
    solver_api_key: Optional[str] = None
    solver_url: str = "https://api.2captcha.com"
    solver_timeout_s: float = 120.0
    solver_poll_interval_s: float = 5.0
    remote_solver_default: bool = False


@dataclass(frozen=True)
class BrowserbaseConfig:
    api_key: Optional[str] = None
    project_id: Optional[str] = None
    api_url: str = "https://api.browserbase.com"
    connect_url: str = "wss://connect.browserbase.com"
    keep_alive: bool = True
    request_timeout_s: float = 30.0


@dataclass(frozen=True)
class FlowConfig:
    portal_url: str = DEFAULT_PORTAL_URL
    layout: PortalLayout = field(default_factory=PortalLayout)
    captcha: CaptchaConfig = field(default_factory=CaptchaConfig)
    browserbase: BrowserbaseConfig = field(default_factory=BrowserbaseConfig)

    navigation_timeout_ms: int = 30_000
    settle_timeout_ms: int = 10_000
    click_timeout_ms: int = 10_000
    option_timeout_ms: int = 5_000
    type_delay_ms: int = 35
    jurisdiction_settle_ms: int = 1_500
    terms_timeout_ms: int = 5_000
    results_timeout_ms: int = 10_000

    require_captcha_cleared_on_resume: bool = False
    screenshot_dir: Optional[str] = None


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    return int(value)


def load_config(env: Mapping[str, str] | None = None) -> FlowConfig:
    """Build a FlowConfig from environment variables."""
    env = os.environ if env is None else env
    return FlowConfig(
        portal_url=env.get("LEXIS_PORTAL_URL") or DEFAULT_PORTAL_URL,
        captcha=CaptchaConfig(
            solver_api_key=env.get("CAPTCHA_SOLVER_API_KEY") or None,
            solver_url=env.get("CAPTCHA_SOLVER_URL") or "https://api.2captcha.com",
            remote_solver_default=_env_bool(env, "LEXIS_USE_REMOTE_SOLVER", False),
        ),
        browserbase=BrowserbaseConfig(
            api_key=env.get("BROWSERBASE_API_KEY") or None,
            project_id=env.get("BROWSERBASE_PROJECT_ID") or None,
            api_url=env.get("BROWSERBASE_API_URL") or "https://api.browserbase.com",
            keep_alive=_env_bool(env, "BROWSERBASE_KEEP_ALIVE", True),
        ),
        navigation_timeout_ms=_env_int(env, "LEXIS_NAVIGATION_TIMEOUT_MS", 30_000),
        require_captcha_cleared_on_resume=_env_bool(env, "LEXIS_REQUIRE_CAPTCHA_ON_RESUME", False),
        screenshot_dir=env.get("LEXIS_SCREENSHOT_DIR") or None,
    )
