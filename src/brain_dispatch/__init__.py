"""Task orchestration and dispatch engine for a personal-assistant backend."""

__version__ = "0.1.0"
