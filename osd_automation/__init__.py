"""Task-sequence helpers for Language Pack packaging and BIOS updates."""

__version__ = "0.1.0"
