"""Medical record custody."""
