"""Command-line interface for the tool runner."""
