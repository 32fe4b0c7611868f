"""Man-overboard tracking engine for Signal K servers."""

__version__ = "0.1.0"
