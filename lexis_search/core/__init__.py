"""Core flow: criteria, element resolution, CAPTCHA handling, sessions."""

from lexis_search.core.captcha import CaptchaMethod, CaptchaOutcome, CaptchaResolver
from lexis_search.core.config import FlowConfig, load_config
from lexis_search.core.context import RuntimeContext
from lexis_search.core.element_resolver import ElementResolver
from lexis_search.core.flow import FlowController, FlowResult, FlowState, FlowStep

__all__ = [
    "CaptchaMethod",
    "CaptchaOutcome",
    "CaptchaResolver",
    "ElementResolver",
    "FlowConfig",
    "FlowController",
    "FlowResult",
    "FlowState",
    "FlowStep",
    "RuntimeContext",
    "load_config",
]
