"""Command-line interface for nucml."""
