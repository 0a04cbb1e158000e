"""IOTA wallet agent runtime: approval-gated transfers over the local iota CLI."""

__version__ = "0.1.0"
