"""Plan/apply reconciliation of scoped configuration and secret variables."""

__version__ = "0.1.0"
