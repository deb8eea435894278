"""
Trade placement protocol.

Placing a trade on the venue page is three strictly ordered steps:

1. Amount    - focus the stake field, clear it, type the stake, commit
2. Expiry    - click the matching duration control (skipped for the venue
               default; failure is logged and the venue default is used)
3. Direction - click the call/put control (required)

Each step walks an ordered chain of selectors from configuration. A
selector wins when it resolves within the per-attempt timeout and the
interaction on it succeeds; otherwise the next one is tried.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from loguru import logger
from playwright.async_api import Error as PlaywrightError

from ..core.config import LocatorSettings
from ..core.exceptions import LocatorNotFound, PlacementAborted
from ..core.models import Signal


DIRECTION_SCRIPT = """
(dir) => {
    const className = dir === 'CALL' ? 'btn-call' : 'btn-put';
    const btn = document.querySelector(`.${className}`) ||
        Array.from(document.querySelectorAll('a, button, div')).find(el =>
            el.textContent.includes(dir) || el.className.includes(className)
        );
    if (btn) {
        btn.click();
        return true;
    }
    return false;
}
"""


def format_amount(amount: float) -> str:
    """
    Render a stake the way a user would type it.

    Examples:
        >>> format_amount(10.0)
        '10'
        >>> format_amount(12.5)
        '12.5'
        >>> format_amount(3.75)
        '3.75'
    """
    return f"{amount:.2f}".rstrip("0").rstrip(".")


@dataclass
class PlacementReport:
    """What the protocol actually did on the page."""

    amount_selector: str
    expiry_applied: bool
    direction_selector: str
    page_url: Optional[str] = None


class PlacementExecutor:
    """
    Drives the placement protocol on one Playwright page.

    Stateless apart from configuration, so one instance serves every user.

    Examples:
        >>> executor = PlacementExecutor(settings.locators)
        >>> report = await executor.execute(page, signal, 20.0)
        >>> report.direction_selector
        'a.btn.btn-call'
    """

    def __init__(
        self,
        locators: Optional[LocatorSettings] = None,
        venue_default_duration: int = 300,
    ):
        self.locators = locators or LocatorSettings()
        self.venue_default_duration = venue_default_duration

    @property
    def attempt_timeout_ms(self) -> int:
        return self.locators.attempt_timeout_ms

    async def _run_chain(
        self,
        page: Any,
        step: str,
        selectors: List[str],
        action: Callable[[Any], Awaitable[None]],
    ) -> str:
        """
        Try each selector in order until one resolves and its action succeeds.

        Returns:
            str: The winning selector

        Raises:
            PlacementAborted: If the page was closed while trying
            LocatorNotFound: If every selector failed
        """
        for selector in selectors:
            if page.is_closed():
                raise PlacementAborted(step, "Session closed during placement")
            try:
                element = await page.wait_for_selector(
                    selector, timeout=self.attempt_timeout_ms
                )
                if element is None:
                    continue
                await action(element)
                logger.debug(f"Step '{step}' succeeded using: {selector}")
                return selector
            except PlaywrightError as e:
                if page.is_closed():
                    raise PlacementAborted(
                        step, "Session closed during placement"
                    ) from e
                logger.debug(f"Step '{step}' selector {selector!r} failed: {e}")

        raise LocatorNotFound(step, selectors)

    async def set_amount(self, page: Any, amount: float) -> str:
        """
        Type the stake into the amount field.

        Raises:
            LocatorNotFound: If no amount field could be used
        """
        text = format_amount(amount)
        logger.debug(f"Setting amount to {text}")

        async def type_amount(element: Any) -> None:
            await element.click()
            await page.keyboard.press("Control+A")
            await page.keyboard.press("Backspace")
            await page.keyboard.type(text)
            await page.keyboard.press("Enter")

        return await self._run_chain(page, "amount", self.locators.amount_input, type_amount)

    async def set_expiry(self, page: Any, duration_seconds: int) -> bool:
        """
        Select the expiry matching the signal duration.

        Returns:
            bool: True if the expiry is in effect (default or clicked),
                False if the control was not found and the venue default applies
        """
        if duration_seconds == self.venue_default_duration:
            return True

        selectors = [
            template.format(seconds=duration_seconds, minutes=duration_seconds // 60)
            for template in self.locators.expiry_option
        ]

        async def click(element: Any) -> None:
            await element.click()

        try:
            await self._run_chain(page, "expiry", selectors, click)
            return True
        except LocatorNotFound:
            logger.warning(
                f"Expiry control for {duration_seconds}s not found, using venue default"
            )
            return False

    async def click_direction(self, page: Any, direction: str) -> str:
        """
        Click the call or put control.

        Returns:
            str: Selector used, or 'script' for the in-page fallback

        Raises:
            PlacementAborted: If no strategy could click the control
        """
        label = direction.upper()
        selectors = (
            self.locators.call_button if label == "CALL" else self.locators.put_button
        )

        async def force_click(element: Any) -> None:
            await element.click(force=True)

        try:
            return await self._run_chain(page, "direction", selectors, force_click)
        except LocatorNotFound as e:
            if self.locators.script_fallback and await self._click_by_script(page, label):
                logger.debug(f"Clicked {label} using in-page script")
                return "script"
            raise PlacementAborted("direction", f"{label} button not found") from e

    async def _click_by_script(self, page: Any, label: str) -> bool:
        if page.is_closed():
            return False
        try:
            return bool(await page.evaluate(DIRECTION_SCRIPT, label))
        except PlaywrightError as e:
            logger.debug(f"Script fallback for {label} failed: {e}")
            return False

    async def execute(self, page: Any, signal: Signal, stake: float) -> PlacementReport:
        """
        Run the full protocol for one signal on one page.

        Args:
            page: The user's Playwright page
            signal (Signal): Signal being placed
            stake (float): Stake computed by the staking engine

        Returns:
            PlacementReport: Selectors used and whether the expiry was applied

        Raises:
            LocatorNotFound: If the amount step failed
            PlacementAborted: If the direction step failed or the page closed
        """
        amount_selector = await self.set_amount(page, stake)
        expiry_applied = await self.set_expiry(page, signal.duration_seconds)
        direction_selector = await self.click_direction(page, signal.direction)

        return PlacementReport(
            amount_selector=amount_selector,
            expiry_applied=expiry_applied,
            direction_selector=direction_selector,
            page_url=None if page.is_closed() else page.url,
        )
