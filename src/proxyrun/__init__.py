"""proxyrun — supervised local proxy sessions."""

__version__ = "0.1.0"
