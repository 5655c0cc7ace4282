"""Storage layer for the notd core."""

from notd_core.storage.note_repository import NoteRepository
from notd_core.storage.property_parser import ParsedProperty, parse_properties
from notd_core.storage.property_repository import PropertyRepository

__all__ = [
    "NoteRepository",
    "PropertyRepository",
    "ParsedProperty",
    "parse_properties",
]
