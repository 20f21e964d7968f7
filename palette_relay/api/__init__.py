"""HTTP API for Palette Relay."""
