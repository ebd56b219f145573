"""Photo derivative pipeline: resize on upload, mirror deletes, index metadata."""

__version__ = "0.1.0"
