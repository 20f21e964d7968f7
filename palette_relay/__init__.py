"""Palette Relay: stream color palettes from several LLMs at once."""

__version__ = "0.1.0"
