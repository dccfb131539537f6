"""SIGTERM/SIGINT wiring for graceful worker shutdown."""

import asyncio
import logging
import signal
from collections.abc import Callable

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def setup_shutdown_signal_handlers(callback: Callable[[], None]) -> list[signal.Signals]:
    """Register SIGTERM/SIGINT handlers that invoke ``callback``.

    Uses the running loop's add_signal_handler() where supported and falls
    back to signal.signal() elsewhere. Returns the signals registered on the
    loop so they can be removed with remove_shutdown_signal_handlers().
    """
    loop = asyncio.get_running_loop()
    registered: list[signal.Signals] = []

    def _on_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, initiating shutdown", sig.name)
        callback()

    try:
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, _on_signal, sig)
            registered.append(sig)
    except NotImplementedError:
        def _handler(signum, frame):
            _on_signal(signal.Signals(signum))

        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, _handler)

    return registered


def remove_shutdown_signal_handlers(registered: list[signal.Signals]) -> None:
    """Undo handlers installed by setup_shutdown_signal_handlers()."""
    loop = asyncio.get_running_loop()
    for sig in registered:
        loop.remove_signal_handler(sig)
