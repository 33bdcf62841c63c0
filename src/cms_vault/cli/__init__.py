"""Command-line interface for cms-vault."""
