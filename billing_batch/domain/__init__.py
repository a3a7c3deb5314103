"""Pure billing run types."""
