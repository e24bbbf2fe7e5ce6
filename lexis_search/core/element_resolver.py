"""
ElementResolver - markup-agnostic form control interaction.

Portal controls show up as native <select> elements, custom comboboxes or
plain text inputs, with or without proper label association. The resolver
walks an ordered list of strategies, cheapest and most specific first:

1. Label tier: control associated with the intent by accessible label
2. Adjacent tier: input rendered next to literal label text
3. Combobox tier: first generic combobox on the page

A tier that raises is treated as exhausted and the next tier runs. The
combobox tier is a last resort: it runs only when no earlier tier found a
control at all, because the first combobox on a page is usually another,
already-set field. Only exhaustion of every tier is a resolver failure.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from playwright.async_api import Locator, Page

logger = logging.getLogger("lexis.resolver")


class TierOutcome(str, Enum):
    SELECTED = "selected"
    NOT_FOUND = "not_found"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ResolverTiming:
    option_timeout_ms: int = 5_000
    type_delay_ms: int = 35


Strategy = Callable[[Page, str, str, ResolverTiming], Awaitable[TierOutcome]]
Locate = Callable[[Page, str], Locator]

CURRENT_VALUE_JS = """
(el) => {
    if (el.tagName === 'SELECT') {
        const opt = el.selectedOptions && el.selectedOptions[0];
        return opt ? opt.textContent : '';
    }
    return el.value || '';
}
"""


def label_pattern(intent: str) -> re.Pattern[str]:
    return re.compile(rf"^\s*{re.escape(intent)}\b", re.IGNORECASE)


def exact_pattern(value: str) -> re.Pattern[str]:
    return re.compile(rf"^\s*{re.escape(value)}\s*$", re.IGNORECASE)


def _by_label(page: Page, intent: str) -> Locator:
    return page.get_by_label(label_pattern(intent)).first


def _adjacent_to_label(page: Page, intent: str) -> Locator:
    return page.locator(f"label:has-text({json.dumps(intent)}) + * input").first


def _by_placeholder(page: Page, intent: str) -> Locator:
    return page.get_by_placeholder(label_pattern(intent)).first


def _first_combobox(page: Page, intent: str) -> Locator:
    return page.get_by_role("combobox").first


def _same_text(left: Optional[str], right: str) -> bool:
    return (left or "").strip().casefold() == right.strip().casefold()


async def _is_native_select(control: Locator) -> bool:
    tag = await control.evaluate("(el) => el.tagName")
    return str(tag).upper() == "SELECT"


async def _type_and_choose(page: Page, control: Locator, value: str, timing: ResolverTiming) -> TierOutcome:
    if await _is_native_select(control):
        await control.select_option(label=value, timeout=timing.option_timeout_ms)
        return TierOutcome.SELECTED

    await control.click(force=True)
    await control.fill("")
    await control.press_sequentially(value, delay=timing.type_delay_ms)

    option = page.get_by_role("option", name=exact_pattern(value)).first
    if await option.count():
        await option.click()
        return TierOutcome.SELECTED

    match = option.or_(page.get_by_text(value, exact=True)).first
    await match.wait_for(state="visible", timeout=timing.option_timeout_ms)
    await match.click()
    return TierOutcome.SELECTED


def _select_tier(name: str, locate: Locate) -> Strategy:
    async def strategy(page: Page, intent: str, value: str, timing: ResolverTiming) -> TierOutcome:
        try:
            control = locate(page, intent)
            if not await control.count():
                return TierOutcome.NOT_FOUND
            return await _type_and_choose(page, control, value, timing)
        except Exception as e:
            logger.warning(f"[Resolver] {name} tier exhausted for {intent!r}={value!r}: {e}")
            return TierOutcome.EXHAUSTED

    strategy.__name__ = f"select_{name}"
    return strategy


def _fill_tier(name: str, locate: Locate) -> Strategy:
    async def strategy(page: Page, intent: str, value: str, timing: ResolverTiming) -> TierOutcome:
        try:
            control = locate(page, intent)
            if not await control.count():
                return TierOutcome.NOT_FOUND
            await control.click(force=True)
            await control.fill(value)
            return TierOutcome.SELECTED
        except Exception as e:
            logger.warning(f"[Resolver] {name} fill tier exhausted for {intent!r}: {e}")
            return TierOutcome.EXHAUSTED

    strategy.__name__ = f"fill_{name}"
    return strategy


SELECT_STRATEGIES: tuple[Strategy, ...] = (
    _select_tier("label", _by_label),
    _select_tier("adjacent", _adjacent_to_label),
)

# Only tried when every strategy above reported NOT_FOUND.
SELECT_LAST_RESORT: tuple[Strategy, ...] = (
    _select_tier("combobox", _first_combobox),
)

FILL_STRATEGIES: tuple[Strategy, ...] = (
    _fill_tier("label", _by_label),
    _fill_tier("placeholder", _by_placeholder),
    _fill_tier("adjacent", _adjacent_to_label),
)


class ElementResolver:
    """
    Selects values in labeled form controls without assuming their markup.

    Strategies are tried in order until one reports SELECTED; the page is
    mutated as a side effect.
    """

    def __init__(
        self,
        timing: ResolverTiming | None = None,
        select_strategies: tuple[Strategy, ...] = SELECT_STRATEGIES,
        fill_strategies: tuple[Strategy, ...] = FILL_STRATEGIES,
        last_resort: tuple[Strategy, ...] = SELECT_LAST_RESORT,
    ) -> None:
        self._timing = timing or ResolverTiming()
        self._select_strategies = select_strategies
        self._last_resort = last_resort
        self._fill_strategies = fill_strategies

    async def _already_selected(self, page: Page, intent: str, value: str) -> bool:
        for locate in (_by_label, _adjacent_to_label):
            try:
                control = locate(page, intent)
                if not await control.count():
                    continue
                current = await control.evaluate(CURRENT_VALUE_JS)
            except Exception:
                continue
            if _same_text(current, value):
                return True
        return False

    async def _walk(
        self,
        strategies: tuple[Strategy, ...],
        page: Page,
        intent: str,
        value: str,
        last_resort: tuple[Strategy, ...] = (),
    ) -> bool:
        found_control = False
        for strategy in strategies + last_resort:
            if found_control and strategy in last_resort:
                logger.info(f"[Resolver] Skipping {strategy.__name__} for {intent!r}: a labeled control was found")
                break
            outcome = await strategy(page, intent, value, self._timing)
            logger.debug(f"[Resolver] {strategy.__name__} -> {outcome.value}")
            if outcome == TierOutcome.SELECTED:
                logger.info(f"[Resolver] {intent!r} set to {value!r} via {strategy.__name__}")
                return True
            found_control = found_control or outcome == TierOutcome.EXHAUSTED
        logger.warning(f"[Resolver] All strategies exhausted for {intent!r}={value!r}")
        return False

    async def select(self, page: Page, intent: str, value: str) -> bool:
        """
        Select ``value`` in whatever control represents ``intent``.

        Returns:
            True once the value is chosen (or was already chosen), False when
            every strategy is exhausted.
        """
        if await self._already_selected(page, intent, value):
            logger.info(f"[Resolver] {intent!r} already set to {value!r}")
            return True
        return await self._walk(self._select_strategies, page, intent, value, last_resort=self._last_resort)

    async def fill(self, page: Page, intent: str, value: str) -> bool:
        """Type ``value`` into the text field labeled ``intent``."""
        return await self._walk(self._fill_strategies, page, intent, value)
