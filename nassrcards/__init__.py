"""Nassr Cards: crypto card shop and satoshi redemption service."""

__version__ = "0.3.0"
