"""Payment event ingestion and multi-level affiliate commission settlement."""

__version__ = "0.1.0"
