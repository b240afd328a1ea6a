"""Watch blockchain addresses and report their transactions block by block."""

__version__ = "0.1.0"
