"""EcoSync: offline operation queue and conflict-resolving sync engine."""

__version__ = "0.1.0"
