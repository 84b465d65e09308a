"""Command-line interface for bdmmpy."""
