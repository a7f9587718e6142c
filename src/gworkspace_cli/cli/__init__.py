"""Command-line interface for gworkspace-cli."""
