"""Outbound delivery of streamed CLI output."""

from .aggregator import BufferState, OutputAggregator, SendFn
from .chunking import split_message

__all__ = ["BufferState", "OutputAggregator", "SendFn", "split_message"]
