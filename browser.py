"""Headless browser session used for a single automation run."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from exceptions import BrowserNotStartedError, NavigationError, ScreenshotError

BrowserType = Literal["chromium", "firefox", "webkit"]
ConsoleListener = Callable[[str, str], None]


class BrowserSession:
    """One isolated Playwright browser, context and page.

    Sessions are never shared: create one per run and close it in ``finally``.
    """

    def __init__(
        self,
        browser_type: BrowserType = "chromium",
        headless: bool = True,
        viewport_width: int = 1280,
        viewport_height: int = 800,
        device_scale_factor: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.device_scale_factor = device_scale_factor
        self.logger = logger or logging.getLogger("browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._console_messages: list[dict[str, Any]] = []
        self._console_listeners: list[ConsoleListener] = []

    def _ensure_started(self) -> None:
        """Raise if browser not started."""
        if self.page is None:
            raise BrowserNotStartedError()

    @property
    def is_started(self) -> bool:
        return self.page is not None

    async def start(self) -> None:
        """Launch the browser with a fixed viewport and scale factor."""
        self._playwright = await async_playwright().start()

        browser_launcher = getattr(self._playwright, self.browser_type)
        self.browser = await browser_launcher.launch(headless=self.headless)
        self.context = await self.browser.new_context(
            viewport={"width": self.viewport_width, "height": self.viewport_height},
            device_scale_factor=self.device_scale_factor,
        )
        self.page = await self.context.new_page()

        self.page.on("console", self._handle_console)
        self.page.on("dialog", self._handle_dialog)

        self.logger.info(
            f"Browser started: {self.browser_type} (headless={self.headless}, "
            f"viewport={self.viewport_width}x{self.viewport_height}, scale={self.device_scale_factor})"
        )

    def add_console_listener(self, listener: ConsoleListener) -> None:
        """Call ``listener(type, text)`` for every console message."""
        self._console_listeners.append(listener)

    def _handle_console(self, msg: Any) -> None:
        """Capture console messages."""
        self._console_messages.append({
            "type": msg.type,
            "text": msg.text,
        })
        # Keep only last 100 messages
        if len(self._console_messages) > 100:
            self._console_messages = self._console_messages[-100:]
        for listener in self._console_listeners:
            listener(msg.type, msg.text)

    async def _handle_dialog(self, dialog: Any) -> None:
        """Dismiss alerts and confirms so they never block the agent."""
        self.logger.info(f"Dismissing {dialog.type} dialog: {dialog.message}")
        await dialog.dismiss()

    def get_console_messages(self) -> list[dict[str, Any]]:
        return list(self._console_messages)

    async def close(self) -> None:
        """Close the browser and clean up resources. Safe to call twice."""
        page, context, browser, playwright = self.page, self.context, self.browser, self._playwright
        self.page = self.context = self.browser = None
        self._playwright = None
        if page:
            await page.close()
        if context:
            await context.close()
        if browser:
            await browser.close()
        if playwright:
            await playwright.stop()
        if page or browser:
            self.logger.info("Browser closed")

    async def goto(
        self,
        url: str,
        wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "load",
        timeout: float = 60000,
    ) -> None:
        """Navigate to a URL."""
        self._ensure_started()
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timed out: {url}", url=url, timeout=timeout) from e
        except Exception as e:
            raise NavigationError(f"Navigation failed: {e}", url=url) from e

    async def wait_for_load_state(
        self,
        state: Literal["load", "domcontentloaded", "networkidle"] = "networkidle",
        timeout: float = 30000,
    ) -> None:
        """Wait for page to reach specified load state."""
        self._ensure_started()
        await self.page.wait_for_load_state(state, timeout=timeout)

    async def screenshot(self, path: Optional[Path] = None, full_page: bool = False) -> bytes:
        """Take a PNG screenshot, optionally also writing it to ``path``."""
        self._ensure_started()
        try:
            if path is not None:
                path.parent.mkdir(parents=True, exist_ok=True)
                return await self.page.screenshot(path=str(path), full_page=full_page)
            return await self.page.screenshot(full_page=full_page)
        except Exception as e:
            raise ScreenshotError(f"Screenshot failed: {e}", path=str(path) if path else None) from e

    async def click(self, x: float, y: float) -> None:
        """Click at viewport coordinates."""
        self._ensure_started()
        await self.page.mouse.click(x, y)

    async def type_text(self, text: str, press_enter: bool = False, delete_existing_text: bool = False) -> None:
        """Type text, optionally clearing existing input."""
        self._ensure_started()
        if delete_existing_text:
            await self.page.keyboard.press("Control+A")
            await self.page.keyboard.press("Backspace")
        await self.page.keyboard.type(text)
        if press_enter:
            await self.page.keyboard.press("Enter")

    async def press_keys(self, keys: list[str]) -> None:
        """Press multiple keys in sequence."""
        self._ensure_started()
        for key in keys:
            await self.page.keyboard.press(key)

    async def scroll(self, pixels: int) -> None:
        """Scroll the page (positive=up, negative=down)."""
        self._ensure_started()
        await self.page.mouse.wheel(0, -pixels)

    def get_url(self) -> str:
        """Get current URL."""
        self._ensure_started()
        return self.page.url

    async def get_title(self) -> str:
        """Get page title."""
        self._ensure_started()
        return await self.page.title()
