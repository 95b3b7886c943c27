"""Command-line interface for localdb."""
