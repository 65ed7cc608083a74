"""Graceful shutdown handling for the bridge.

Traps SIGTERM and SIGINT, lets the running bridge finish the webhook or
tick it is processing, and runs registered cleanup callbacks within a
bounded time.

Usage:
    ```python
    async def main():
        shutdown = GracefulShutdown()

        async with shutdown:
            bridge = Bridge(settings)
            shutdown.register_cleanup(bridge.stop)
            await bridge.start()

            await shutdown.wait()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

# Default time allowed for cleanup callbacks, in seconds
DEFAULT_SHUTDOWN_TIMEOUT = 30.0

# Signals to trap for graceful shutdown
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class GracefulShutdown:
    """Signal-driven shutdown coordinator.

    The first SIGTERM/SIGINT sets the shutdown event; a second one exits
    immediately. Cleanup callbacks run once, in registration order, when
    the context manager exits.

    Example:
        ```python
        shutdown = GracefulShutdown(timeout=10.0)

        async with shutdown:
            shutdown.register_cleanup(bridge.stop)
            await shutdown.wait()
        ```
    """

    def __init__(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Initialize the shutdown handler.

        Args:
            timeout: Maximum time in seconds each cleanup callback may take.
        """
        self._timeout = timeout

        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False
        self._original_handlers: dict[signal.Signals, Any] = {}
        self._cleanup_callbacks: list[Callable[[], Any]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._cleaned_up = False

    @property
    def timeout(self) -> float:
        """Cleanup timeout in seconds."""
        return self._timeout

    @property
    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    def register_cleanup(self, callback: Callable[[], Any]) -> None:
        """Register a cleanup callback to run during shutdown.

        Args:
            callback: A callable (sync or async) to run during shutdown.
        """
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Request shutdown from application code."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested programmatically")
            self._shutdown_event.set()

    async def wait(self) -> None:
        """Block until a shutdown signal arrives or request_shutdown() is called."""
        await self._shutdown_event.wait()

    def install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown.

        On Windows only ``signal.signal`` is available, elsewhere the
        handlers are attached to the running event loop.
        """
        self._loop = asyncio.get_running_loop()

        for sig in SHUTDOWN_SIGNALS:
            try:
                if sys.platform == "win32":
                    self._original_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
                else:
                    self._loop.add_signal_handler(sig, self._handle_signal, sig)
                logger.debug("Installed handler for %s", sig.name)
            except (ValueError, OSError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        """Remove installed signal handlers and restore originals."""
        if sys.platform == "win32":
            for sig, original in self._original_handlers.items():
                with suppress(ValueError, OSError):
                    signal.signal(sig, original)
            self._original_handlers.clear()
        elif self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                with suppress(ValueError, OSError):
                    self._loop.remove_signal_handler(sig)

        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signal.

        Args:
            sig: The signal that was received.
        """
        if self._shutdown_requested:
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)

        self._shutdown_requested = True
        logger.info("Received %s - initiating graceful shutdown...", sig.name)
        self._shutdown_event.set()

    def _handle_signal_sync(self, sig: int, _frame: FrameType | None) -> None:
        self._handle_signal(signal.Signals(sig))

    async def run_cleanup_callbacks(self) -> None:
        """Run all registered cleanup callbacks once.

        A failing or slow callback is logged and does not prevent the
        remaining callbacks from running.
        """
        if self._cleaned_up:
            return
        self._cleaned_up = True

        for callback in self._cleanup_callbacks:
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await asyncio.wait_for(result, timeout=self._timeout)
            except TimeoutError:
                logger.error("Cleanup callback timed out after %.1fs", self._timeout)
            except Exception as e:
                logger.error("Cleanup callback failed: %s", e)

    async def __aenter__(self) -> GracefulShutdown:
        """Async context manager entry - install signal handlers."""
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        """Async context manager exit - cleanup."""
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
