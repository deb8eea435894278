"""
Unit tests for the trade placement protocol.

Tests cover:
- Amount entry keystrokes and locator fallback
- Expiry skip for the venue default, selector templating, soft failure
- Direction forced click, script fallback and abort
- Step ordering and page-closed aborts
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from autotrader.core.exceptions import LocatorNotFound, PlacementAborted
from autotrader.core.models import Signal
from autotrader.execution.placement import (
    DIRECTION_SCRIPT,
    PlacementExecutor,
    format_amount,
)


@pytest.fixture
def executor(fast_locators):
    return PlacementExecutor(fast_locators, venue_default_duration=300)


def resolve_only(page, mapping):
    """Make wait_for_selector resolve only the selectors in mapping."""

    async def wait_for_selector(selector, timeout=None):
        if selector in mapping:
            return mapping[selector]
        raise PlaywrightError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    page.wait_for_selector = AsyncMock(side_effect=wait_for_selector)


def make_element():
    element = MagicMock(name="element")
    element.click = AsyncMock()
    return element


class TestFormatAmount:
    """Test stake rendering."""

    @pytest.mark.parametrize("amount,text", [
        (10.0, "10"),
        (12.5, "12.5"),
        (3.75, "3.75"),
        (1000.0, "1000"),
    ])
    def test_format(self, amount, text):
        assert format_amount(amount) == text


class TestSetAmount:
    """Test the amount step."""

    @pytest.mark.asyncio
    async def test_types_amount(self, executor, page_factory):
        page = page_factory()

        selector = await executor.set_amount(page, 20.0)

        assert selector == "input.amount"
        page.element.click.assert_awaited_once()
        assert [c.args[0] for c in page.keyboard.press.await_args_list] == [
            "Control+A", "Backspace", "Enter"
        ]
        page.keyboard.type.assert_awaited_once_with("20")

    @pytest.mark.asyncio
    async def test_falls_back_to_next_selector(self, executor, page_factory):
        page = page_factory()
        fallback = make_element()
        resolve_only(page, {"input[type='text']": fallback})

        selector = await executor.set_amount(page, 20.0)

        assert selector == "input[type='text']"
        fallback.click.assert_awaited_once()
        timeouts = [c.kwargs["timeout"] for c in page.wait_for_selector.await_args_list]
        assert timeouts == [50, 50]

    @pytest.mark.asyncio
    async def test_none_result_tries_next(self, executor, page_factory):
        page = page_factory()
        fallback = make_element()
        page.wait_for_selector = AsyncMock(side_effect=[None, fallback])

        assert await executor.set_amount(page, 5.0) == "input[type='text']"

    @pytest.mark.asyncio
    async def test_click_failure_tries_next(self, executor, page_factory):
        page = page_factory()
        broken = make_element()
        broken.click.side_effect = PlaywrightError("Element is not visible")
        working = make_element()
        resolve_only(page, {"input.amount": broken, "input[type='text']": working})

        assert await executor.set_amount(page, 5.0) == "input[type='text']"
        working.click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_locator_resolves(self, executor, page_factory):
        page = page_factory()
        resolve_only(page, {})

        with pytest.raises(LocatorNotFound) as exc_info:
            await executor.set_amount(page, 20.0)

        assert exc_info.value.step == "amount"
        assert exc_info.value.selectors == ["input.amount", "input[type='text']"]
        page.keyboard.type.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_page_aborts(self, executor, page_factory):
        page = page_factory()
        page.is_closed.return_value = True

        with pytest.raises(PlacementAborted, match="Session closed during placement"):
            await executor.set_amount(page, 20.0)

        page.wait_for_selector.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_page_closed_mid_chain(self, executor, page_factory):
        page = page_factory()

        async def close_then_fail(selector, timeout=None):
            page.is_closed.return_value = True
            raise PlaywrightError("Target page, context or browser has been closed")

        page.wait_for_selector = AsyncMock(side_effect=close_then_fail)

        with pytest.raises(PlacementAborted) as exc_info:
            await executor.set_amount(page, 20.0)

        assert exc_info.value.step == "amount"
        assert page.wait_for_selector.await_count == 1


class TestSetExpiry:
    """Test the expiry step."""

    @pytest.mark.asyncio
    async def test_venue_default_skipped(self, executor, page_factory):
        page = page_factory()

        assert await executor.set_expiry(page, 300) is True
        page.wait_for_selector.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_selector_templated_with_duration(self, executor, page_factory):
        page = page_factory()

        assert await executor.set_expiry(page, 60) is True
        page.wait_for_selector.assert_awaited_once_with("[data-period='60']", timeout=50)
        page.element.click.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_minutes_template(self, page_factory, fast_locators):
        locators = fast_locators.model_copy(update={"expiry_option": ["text=M{minutes}"]})
        executor = PlacementExecutor(locators)
        page = page_factory()

        await executor.set_expiry(page, 180)

        page.wait_for_selector.assert_awaited_once_with("text=M3", timeout=50)

    @pytest.mark.asyncio
    async def test_missing_control_is_soft_failure(self, executor, page_factory):
        page = page_factory()
        resolve_only(page, {})

        assert await executor.set_expiry(page, 60) is False


class TestClickDirection:
    """Test the direction step."""

    @pytest.mark.asyncio
    async def test_call_forced_click(self, executor, page_factory):
        page = page_factory()

        selector = await executor.click_direction(page, "call")

        assert selector == "a.btn-call"
        page.element.click.assert_awaited_once_with(force=True)

    @pytest.mark.asyncio
    async def test_put_uses_put_chain(self, executor, page_factory):
        page = page_factory()
        element = make_element()
        resolve_only(page, {"text=LOWER": element})

        assert await executor.click_direction(page, "put") == "text=LOWER"
        element.click.assert_awaited_once_with(force=True)

    @pytest.mark.asyncio
    async def test_script_fallback(self, executor, page_factory):
        page = page_factory()
        resolve_only(page, {})
        page.evaluate.return_value = True

        assert await executor.click_direction(page, "call") == "script"
        page.evaluate.assert_awaited_once_with(DIRECTION_SCRIPT, "CALL")

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, executor, page_factory):
        page = page_factory()
        resolve_only(page, {})
        page.evaluate.return_value = False

        with pytest.raises(PlacementAborted, match="PUT button not found") as exc_info:
            await executor.click_direction(page, "put")

        assert exc_info.value.step == "direction"

    @pytest.mark.asyncio
    async def test_script_fallback_disabled(self, page_factory, fast_locators):
        locators = fast_locators.model_copy(update={"script_fallback": False})
        executor = PlacementExecutor(locators)
        page = page_factory()
        resolve_only(page, {})

        with pytest.raises(PlacementAborted):
            await executor.click_direction(page, "call")

        page.evaluate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_script_error_treated_as_failure(self, executor, page_factory):
        page = page_factory()
        resolve_only(page, {})
        page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")

        with pytest.raises(PlacementAborted):
            await executor.click_direction(page, "call")


class TestExecute:
    """Test the full protocol."""

    @pytest.mark.asyncio
    async def test_steps_in_order(self, executor, page_factory):
        page = page_factory("https://pocketoption.com/en/cabinet/demo-quick-high-low/")
        signal = Signal(signal_id="S1", asset="EURUSD", direction="call", duration_seconds=60)

        report = await executor.execute(page, signal, 40.0)

        tried = [c.args[0] for c in page.wait_for_selector.await_args_list]
        assert tried == ["input.amount", "[data-period='60']", "a.btn-call"]
        assert report.amount_selector == "input.amount"
        assert report.expiry_applied is True
        assert report.direction_selector == "a.btn-call"
        assert report.page_url.endswith("demo-quick-high-low/")

    @pytest.mark.asyncio
    async def test_amount_failure_stops_protocol(self, executor, page_factory, signal):
        page = page_factory()
        resolve_only(page, {"a.btn-call": make_element()})

        with pytest.raises(LocatorNotFound):
            await executor.execute(page, signal, 10.0)

        tried = [c.args[0] for c in page.wait_for_selector.await_args_list]
        assert "a.btn-call" not in tried

    @pytest.mark.asyncio
    async def test_expiry_failure_does_not_abort(self, executor, page_factory):
        page = page_factory()
        call = make_element()
        resolve_only(page, {"input.amount": make_element(), "a.btn-call": call})
        signal = Signal(signal_id="S1", asset="EURUSD", direction="call", duration_seconds=60)

        report = await executor.execute(page, signal, 10.0)

        assert report.expiry_applied is False
        call.click.assert_awaited_once_with(force=True)
