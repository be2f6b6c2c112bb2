"""Proving backend boundary and worker pool."""
