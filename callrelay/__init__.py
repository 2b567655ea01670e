"""Call signaling relay: presence tracking, call lifecycle and RTC credentials."""

__version__ = "0.1.0"
