"""
Pytest configuration and shared fixtures for autotrader tests.

This module provides:
- Fake Playwright driver/browser/context/page built from unittest.mock
- Seeded in-memory StateStore with trading users
- Common Signal and Settings fixtures
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from autotrader.core.config import LocatorSettings, PoolSettings, Settings
from autotrader.core.event_bus import EventBus
from autotrader.core.models import Signal, StakingState, TradingSettings, UserRecord
from autotrader.core.state_store import StateStore

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def build_page(url: str = "about:blank") -> MagicMock:
    """
    Fake Playwright Page.

    `page.handlers` collects callbacks registered through page.on() so tests
    can fire navigation and close events by hand. wait_for_selector resolves
    every selector to `page.element` unless a test overrides it.
    """
    page = MagicMock(name="page")
    page.url = url
    page.main_frame = MagicMock(name="main_frame")
    page.is_closed = MagicMock(return_value=False)
    page.handlers = {}
    page.on = MagicMock(
        side_effect=lambda name, callback: page.handlers.setdefault(name, []).append(callback)
    )
    page.goto = AsyncMock()
    page.element = MagicMock(name="element")
    page.element.click = AsyncMock()
    page.wait_for_selector = AsyncMock(return_value=page.element)
    page.keyboard = MagicMock(name="keyboard")
    page.keyboard.press = AsyncMock()
    page.keyboard.type = AsyncMock()
    page.evaluate = AsyncMock(return_value=False)
    return page


def navigate(page: MagicMock, url: str) -> None:
    """Simulate a main-frame navigation on a fake page."""
    page.url = url
    page.main_frame.url = url
    for callback in page.handlers.get("framenavigated", []):
        callback(page.main_frame)


def drain_queue(bus: EventBus) -> list:
    """Pop every event waiting on a bus that is not running."""
    events = []
    while not bus._queue.empty():
        events.append(bus._queue.get_nowait())
        bus._queue.task_done()
    return events


@pytest.fixture
def queued_events():
    """Helper returning events published to a stopped bus."""
    return drain_queue


@pytest.fixture
def page_factory():
    """Factory for standalone fake pages."""
    return build_page


@pytest.fixture
def fire_navigation():
    """Helper firing framenavigated handlers on a fake page."""
    return navigate


@pytest.fixture
def fake_playwright():
    """
    Fake async_playwright() stack.

    Returns a namespace with:
        factory: drop-in for playwright.async_api.async_playwright
        driver: the started Playwright object
        browser: the shared browser (`handlers` collects browser.on() callbacks)
        contexts: every context created, in order
    """
    contexts = []
    browser = MagicMock(name="browser")
    browser.close = AsyncMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.handlers = {}
    browser.on = MagicMock(
        side_effect=lambda name, callback: browser.handlers.setdefault(name, []).append(callback)
    )

    async def new_context(**kwargs):
        context = MagicMock(name=f"context{len(contexts)}")
        context.page = build_page()
        context.new_page = AsyncMock(return_value=context.page)
        context.close = AsyncMock()
        context.kwargs = kwargs
        contexts.append(context)
        return context

    browser.new_context = AsyncMock(side_effect=new_context)

    driver = MagicMock(name="playwright")
    driver.chromium.launch = AsyncMock(return_value=browser)
    driver.stop = AsyncMock()

    manager = MagicMock(name="playwright_manager")
    manager.start = AsyncMock(return_value=driver)

    return SimpleNamespace(
        factory=MagicMock(return_value=manager),
        manager=manager,
        driver=driver,
        browser=browser,
        contexts=contexts,
    )


@pytest.fixture
def event_bus():
    """EventBus instance for tests."""
    return EventBus(queue_size=100)


@pytest.fixture
def pool_settings():
    """Pool settings with a small cap."""
    return PoolSettings(max_sessions=3, headless=True)


@pytest.fixture
def fast_locators():
    """Locator settings with short chains."""
    return LocatorSettings(
        attempt_timeout_ms=50,
        amount_input=["input.amount", "input[type='text']"],
        expiry_option=["[data-period='{seconds}']"],
        call_button=["a.btn-call", "text=HIGHER"],
        put_button=["a.btn-put", "text=LOWER"],
        script_fallback=True,
    )


@pytest.fixture
def settings(pool_settings, fast_locators):
    """Full settings with test pool and locator sections."""
    return Settings(pool=pool_settings, locators=fast_locators)


def make_user(owner_id: str, **overrides) -> UserRecord:
    """Auto-trading user with base 10, cap 1000, multiplier 2, 6 steps."""
    settings = TradingSettings(
        base_amount=overrides.pop("base_amount", 10.0),
        max_amount=overrides.pop("max_amount", 1000.0),
        is_auto_trading=overrides.pop("is_auto_trading", True),
        martingale_enabled=overrides.pop("martingale_enabled", True),
    )
    state = StakingState(
        current_level=overrides.pop("current_level", 0),
        loss_streak=overrides.pop("loss_streak", 0),
    )
    return UserRecord(
        owner_id=owner_id,
        email=f"{owner_id}@test.com",
        trading_settings=settings,
        staking_state=state,
        **overrides,
    )


@pytest.fixture
def user_factory():
    """Factory for auto-trading users."""
    return make_user


@pytest.fixture
def store():
    """StateStore seeded with three auto-trading users."""
    state_store = StateStore()
    for owner_id in ("user-a", "user-b", "user-c"):
        state_store.add_user(make_user(owner_id))
    return state_store


@pytest.fixture
def signal():
    """Sample CALL signal using the venue default expiry."""
    return Signal(
        signal_id="SIG_EURUSD_1700000000000",
        asset="EURUSD",
        direction="call",
        duration_seconds=300,
    )
