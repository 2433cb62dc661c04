"""psx-wizard: PSX disc image organizer (naming, grouping, CHD conversion, playlists)."""

__version__ = "0.1.0"
