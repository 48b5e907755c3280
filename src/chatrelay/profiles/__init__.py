"""Tool permission profiles and loader exports."""

from .loader import ProfileLoadError, ProfileLoader
from .models import PERMISSION_MODES, ToolProfile

__all__ = [
    "PERMISSION_MODES",
    "ProfileLoadError",
    "ProfileLoader",
    "ToolProfile",
]
