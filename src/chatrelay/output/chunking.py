"""Split outbound text into channel-sized chunks."""

from __future__ import annotations

DEFAULT_CHUNK_SIZE = 5000
BOUNDARY_WINDOW = 0.8


def split_message(text: str, max_length: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split ``text`` into chunks of at most ``max_length`` characters.

    A chunk ends just after the last newline, or failing that the last space,
    found in the trailing 20% of the bound. With no such boundary the text is
    cut at exactly ``max_length``.
    """

    if max_length < 1:
        raise ValueError("max_length must be >= 1")
    if len(text) <= max_length:
        return [text] if text else []

    chunks: list[str] = []
    remaining = text
    floor = max_length * BOUNDARY_WINDOW
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        split_index = max_length
        newline = remaining.rfind("\n", 0, max_length)
        space = remaining.rfind(" ", 0, max_length)
        if newline > floor:
            split_index = newline + 1
        elif space > floor:
            split_index = space + 1

        chunks.append(remaining[:split_index])
        remaining = remaining[split_index:]

    return chunks


__all__ = ["BOUNDARY_WINDOW", "DEFAULT_CHUNK_SIZE", "split_message"]
