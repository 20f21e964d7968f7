"""Database entities."""

from palette_relay.storage.entities.palette_session import (
    Base,
    PaletteSession,
    PaletteSessionVersion,
)

__all__ = [
    "Base",
    "PaletteSession",
    "PaletteSessionVersion",
]
