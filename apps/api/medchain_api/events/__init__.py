"""Outbound custody events."""
