"""Order capture service: persists orders and publishes order notifications."""

__version__ = "0.1.0"
