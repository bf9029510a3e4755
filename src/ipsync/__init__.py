"""ipsync - keep a listener in sync with a roaming peer's address."""

__version__ = "0.1.0"
