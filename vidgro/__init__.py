"""VidGro coin ledger and promotion queue engine."""

__version__ = "0.1.0"
