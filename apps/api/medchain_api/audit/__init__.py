"""Audit trail reconstruction."""
