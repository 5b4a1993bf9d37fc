"""User identities and registration."""
