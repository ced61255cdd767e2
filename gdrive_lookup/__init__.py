"""Google Drive Lookup - entity search over Google Drive file content."""

__version__ = "1.0.0"
