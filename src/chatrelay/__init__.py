"""Relay chat conversations to Claude Code CLI sessions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
