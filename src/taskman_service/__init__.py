"""TaskMan task service: task lifecycle, token ledger and expiration sweeper."""

__version__ = "0.1.0"
