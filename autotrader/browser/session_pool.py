"""
Browser Session Pool for the autotrader

One Chromium process is shared by every user; each user gets an isolated
BrowserContext (own cookies and storage, so independent venue logins) with
a single Page used as the control handle.

Architecture:
    - The shared browser starts lazily on the first create_session()
    - The session map is private to the pool and mutated only by its methods
    - Page location is tracked from main-frame navigation events, never polled
    - An unexpected page close (venue logout, user closing the window) tears
      the session down and publishes SESSION_CLOSED without touching the
      shared browser
    - A crashed shared browser drops every session it carried; the next
      create_session() launches a fresh one
    - Sessions on the trading page are never reaped for inactivity

Graceful Shutdown:
    - close_session() closes one context and is idempotent
    - close_all() closes every context, then the browser, then the driver
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..core.config import PoolSettings
from ..core.event_bus import Event, EventBus, EventType
from ..core.exceptions import (
    CapacityExceeded,
    NavigationFailure,
    SessionCreationError,
    SessionNotFound,
)
from ..core.models import LocationState, PoolStats, Session, utcnow


class SessionPoolManager:
    """
    Owns the shared browser and every per-user session.

    Attributes:
        event_bus (EventBus): Bus receiving SESSION_CREATED, SESSION_CLOSED
            and USER_ON_TRADING_PAGE events
        settings (PoolSettings): Cap, launch options, venue URLs and timeouts

    Examples:
        >>> pool = SessionPoolManager(event_bus, settings.pool)
        >>> await pool.create_session("user-1")
        >>> await pool.navigate_to_entry("user-1")
        >>> # user logs in by hand and opens the trading page
        >>> pool.is_on_tradable_page("user-1")
        True
        >>> await pool.close_all()
    """

    def __init__(
        self,
        event_bus: EventBus,
        settings: Optional[PoolSettings] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        """
        Initialize the pool. No browser is started until the first session.

        Args:
            event_bus (EventBus): Event bus for session lifecycle events
            settings (PoolSettings, optional): Pool settings, defaults if omitted
            playwright_factory (Callable): Returns an object whose start()
                coroutine yields a Playwright driver
        """
        self.event_bus = event_bus
        self.settings = settings or PoolSettings()
        self._playwright_factory = playwright_factory

        self._sessions: Dict[str, Session] = {}
        self._playwright: Any = None
        self._browser: Any = None
        self._lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()

    @property
    def cap(self) -> int:
        return self.settings.max_sessions

    async def _ensure_browser(self) -> None:
        """Start the Playwright driver and shared Chromium if not running."""
        if self._browser is not None:
            return

        logger.info("Launching shared browser instance")
        if self._playwright is None:
            self._playwright = await self._playwright_factory().start()

        self._browser = await self._playwright.chromium.launch(
            headless=self.settings.headless,
            args=list(self.settings.launch_args),
        )
        self._browser.on("disconnected", self._on_browser_disconnected)

    def _on_browser_disconnected(self, browser: Any) -> None:
        """Forget a crashed shared browser and drop the sessions it carried."""
        if browser is not self._browser:
            return

        logger.error(
            f"Shared browser disconnected, dropping {len(self._sessions)} session(s)"
        )
        self._browser = None
        for session in list(self._sessions.values()):
            session.alive = False
            self._spawn(self._teardown(session, reason="browser_disconnected"))

    async def _discard_dead_browser(self) -> None:
        if self._browser is not None and not self._browser.is_connected():
            self._on_browser_disconnected(self._browser)
            await self.drain_background()

    async def create_session(self, owner_id: str) -> Session:
        """
        Open an isolated browser context and page for a user.

        Returns the existing session if the user already has a live one.

        Args:
            owner_id (str): User identifier

        Returns:
            Session: The user's session

        Raises:
            CapacityExceeded: If the pool already holds `cap` sessions
            SessionCreationError: If the browser, context or page cannot be created
        """
        async with self._lock:
            await self._discard_dead_browser()
            existing = self._sessions.get(owner_id)
            if existing is not None and existing.alive:
                logger.debug(f"Session for {owner_id} already exists, reusing it")
                return existing

            if len(self._sessions) >= self.cap:
                logger.warning(
                    f"Refusing session for {owner_id}: pool at capacity ({self.cap})"
                )
                raise CapacityExceeded(self.cap)

            logger.info(f"Creating browser session for user {owner_id}")

            context = None
            try:
                await self._ensure_browser()
                context = await self._browser.new_context(no_viewport=True)
                page = await context.new_page()
            except PlaywrightError as e:
                if context is not None:
                    try:
                        await context.close()
                    except PlaywrightError as close_error:
                        logger.error(
                            f"Error closing half-created context for {owner_id}: {close_error}"
                        )
                raise SessionCreationError(
                    f"Failed to create browser session for {owner_id}: {e}"
                ) from e

            session = Session(owner_id=owner_id, context=context, page=page)
            self._sessions[owner_id] = session
            self._attach_observers(session)

        await self._publish(EventType.SESSION_CREATED, owner_id, {"owner_id": owner_id})
        return session

    def _attach_observers(self, session: Session) -> None:
        """Register navigation and close observers on the session's page."""
        page = session.page
        page.on("framenavigated", lambda frame: self._on_frame_navigated(session, frame))
        page.on("close", lambda _page: self._on_page_closed(session))

    def _on_frame_navigated(self, session: Session, frame: Any) -> None:
        if frame is not session.page.main_frame:
            return
        self.record_navigation(session, frame.url)

    def _on_page_closed(self, session: Session) -> None:
        if self._sessions.get(session.owner_id) is session and session.alive:
            logger.warning(f"Page closed unexpectedly for {session.owner_id}")
            self._spawn(self._teardown(session, reason="page_closed"))

    def record_navigation(self, session: Session, url: str) -> None:
        """
        Update a session from an observed main-frame navigation.

        Publishes USER_ON_TRADING_PAGE when the session enters a tradable page.
        Navigation reported for a session no longer in the pool is ignored.
        """
        if self._sessions.get(session.owner_id) is not session:
            return

        previous = session.location_state
        session.touch()
        session.current_url = url
        session.location_state = self.classify_url(url)

        if session.location_state is not previous:
            logger.debug(
                f"Session {session.owner_id} moved {previous.value} -> "
                f"{session.location_state.value}"
            )

        if session.location_state.is_tradable and not previous.is_tradable:
            self._spawn(self._publish(
                EventType.USER_ON_TRADING_PAGE,
                session.owner_id,
                {
                    "owner_id": session.owner_id,
                    "url": url,
                    "location": session.location_state.value,
                },
            ))

    def classify_url(self, url: str) -> LocationState:
        """
        Classify a URL against the configured trading-page patterns.

        Examples:
            >>> pool.classify_url("https://pocketoption.com/en/cabinet/demo-quick-high-low/")
            <LocationState.ON_TARGET_DEMO: 'on_target_demo'>
            >>> pool.classify_url("https://pocketoption.com/en/login")
            <LocationState.OFF_TARGET: 'off_target'>
        """
        if not url:
            return LocationState.OFF_TARGET
        if self.settings.demo_url_pattern in url:
            return LocationState.ON_TARGET_DEMO
        if self.settings.real_url_pattern in url:
            return LocationState.ON_TARGET_REAL
        return LocationState.OFF_TARGET

    def _require(self, owner_id: str) -> Session:
        session = self._sessions.get(owner_id)
        if session is None or not session.alive:
            raise SessionNotFound(owner_id)
        return session

    async def navigate_to_entry(self, owner_id: str) -> None:
        """
        Load the venue login page in the user's session.

        Raises:
            SessionNotFound: If the user has no live session
            NavigationFailure: If the page load fails or times out
        """
        session = self._require(owner_id)
        url = self.settings.login_url

        try:
            await session.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.settings.navigation_timeout_ms,
            )
        except PlaywrightError as e:
            raise NavigationFailure(owner_id, url, str(e)) from e

        session.touch()
        logger.info(f"Session {owner_id} opened venue login page")

    def is_on_tradable_page(self, owner_id: str) -> bool:
        """
        Whether the user's page is on the trading page right now.

        Read from the page's live URL on every call.
        """
        session = self._sessions.get(owner_id)
        if session is None or not session.alive:
            return False

        page = session.page
        if page.is_closed():
            return False
        return self.classify_url(page.url).is_tradable

    def get_handle(self, owner_id: str) -> Optional[Any]:
        """Return the user's page, or None if there is no live session."""
        session = self._sessions.get(owner_id)
        if session is None or not session.alive:
            return None
        return session.page

    def get_session(self, owner_id: str) -> Optional[Session]:
        return self._sessions.get(owner_id)

    def live_owner_ids(self) -> List[str]:
        """Owners of every session currently alive."""
        return [owner_id for owner_id, s in self._sessions.items() if s.alive]

    async def close_session(self, owner_id: str, reason: str = "closed") -> bool:
        """
        Close a user's context and forget the session.

        Never closes the shared browser. Safe to call repeatedly.

        Returns:
            bool: True if a session was closed by this call
        """
        session = self._sessions.get(owner_id)
        if session is None:
            return False
        return await self._teardown(session, reason)

    async def _teardown(self, session: Session, reason: str) -> bool:
        if self._sessions.get(session.owner_id) is not session:
            return False

        # Remove before awaiting so concurrent callers see it gone.
        del self._sessions[session.owner_id]
        session.alive = False

        try:
            await session.context.close()
        except PlaywrightError as e:
            logger.error(f"Error closing context for {session.owner_id}: {e}")

        logger.info(f"Closed browser session for {session.owner_id} ({reason})")
        await self._publish(
            EventType.SESSION_CLOSED,
            session.owner_id,
            {"owner_id": session.owner_id, "reason": reason},
        )
        return True

    async def close_all(self) -> None:
        """Close every session, then the shared browser and driver."""
        logger.info(f"Closing all browser sessions ({len(self._sessions)})")

        await self.drain_background()
        await asyncio.gather(
            *(self._teardown(s, "shutdown") for s in list(self._sessions.values()))
        )

        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.error(f"Error closing shared browser: {e}")

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.error(f"Error stopping Playwright driver: {e}")
            self._playwright = None

    def touch(self, owner_id: str) -> None:
        """Record trading activity on a live session; unknown owners are ignored."""
        session = self._sessions.get(owner_id)
        if session is not None and session.alive:
            session.touch()

    async def reap_idle(self, now: Optional[datetime] = None) -> List[str]:
        """
        Close sessions with no activity for longer than the idle timeout.

        A session whose page is on the trading page is never reaped.

        Returns:
            List[str]: Owners whose sessions were closed
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.idle_timeout_seconds)
        idle = [
            s for s in self._sessions.values()
            if s.last_activity_at < cutoff and not self.is_on_tradable_page(s.owner_id)
        ]

        closed = []
        for session in idle:
            if await self._teardown(session, "idle_timeout"):
                closed.append(session.owner_id)

        if closed:
            logger.info(f"Reaped {len(closed)} idle session(s)")
        return closed

    def stats(self) -> PoolStats:
        """Counts of sessions, live sessions and sessions on a trading page."""
        sessions = list(self._sessions.values())
        return PoolStats(
            total=len(sessions),
            alive_count=sum(1 for s in sessions if s.alive),
            on_tradable_page_count=sum(
                1 for s in sessions if s.alive and s.location_state.is_tradable
            ),
            cap=self.cap,
        )

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain_background(self) -> None:
        """Wait for observer-triggered work (teardowns, notifications) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _publish(self, event_type: EventType, owner_id: str, data: Dict[str, Any]) -> None:
        try:
            await self.event_bus.publish(Event(
                event_type=event_type,
                data=data,
                source="SessionPoolManager",
                owner_id=owner_id,
            ))
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value} for {owner_id}: {e}")

    @property
    def session_count(self) -> int:
        return len(self._sessions)
