"""Pydantic request and state models."""
