"""NemoVault: local zero-knowledge encrypted file vault engine."""

__version__ = "0.5.0"
