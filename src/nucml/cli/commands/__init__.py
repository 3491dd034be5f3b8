"""Implementations of the nucml subcommands."""
