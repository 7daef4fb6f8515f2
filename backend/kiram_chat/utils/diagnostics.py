import inspect
import logging
from typing import Callable, List

from kiram_chat.core.exceptions import ChatError

logger = logging.getLogger(__name__)

DiagnosticListener = Callable[[ChatError], object]


class DiagnosticsChannel:
    """Sink for non-fatal errors that never reach the caller (e.g. stale summaries)."""

    def __init__(self) -> None:
        self._listeners: List[DiagnosticListener] = []

    def add_listener(self, listener: DiagnosticListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DiagnosticListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def report(self, error: ChatError) -> None:
        logger.warning(f"{type(error).__name__}: {error.detail}")
        for listener in list(self._listeners):
            try:
                result = listener(error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Diagnostics listener failed")
