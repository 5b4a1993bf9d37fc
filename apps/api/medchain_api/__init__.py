"""Consent-gated custody of encrypted medical records."""

__version__ = "0.1.0"
