"""Patient consent management."""
