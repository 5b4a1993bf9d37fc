"""Cryptographic helpers."""
