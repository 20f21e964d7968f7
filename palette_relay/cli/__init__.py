"""Command-line interface for Palette Relay."""
