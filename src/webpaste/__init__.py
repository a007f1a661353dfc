"""webpaste: content-addressed paste service with expiring short URLs."""

__version__ = "0.1.0"
