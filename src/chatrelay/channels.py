"""Outbound channels implementing the ``send(destination, text)`` primitive."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LoggingChannel:
    """Channel that only logs outbound messages.

    Used when no chat platform is attached; the service's message log still
    records every delivered chunk, so the transcript stays readable.
    """

    def __init__(self, preview_chars: int = 200) -> None:
        self._preview_chars = preview_chars
        self.sent = 0

    async def __call__(self, destination: str, text: str) -> bool:
        self.sent += 1
        logger.info(
            "Outbound message",
            extra={
                "destination": destination,
                "chars": len(text),
                "preview": text[: self._preview_chars],
            },
        )
        return True


__all__ = ["LoggingChannel"]
