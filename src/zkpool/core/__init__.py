"""Core pool client: accounts, tree mirror, operations and the controller."""
