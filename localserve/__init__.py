"""LocalServe: manage local static-file HTTP servers from inside a host process."""

__version__ = "1.0.0"
