"""Chain boundary."""
