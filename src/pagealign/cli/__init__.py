"""Command-line interface for pagealign."""
