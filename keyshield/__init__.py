"""KeyShield — API key lifecycle service with rotate-on-use credentials."""

__version__ = "1.0.0"
