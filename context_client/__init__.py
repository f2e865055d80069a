"""Screen-context watcher that triggers music generation on context switches."""

__version__ = "0.1.0"
