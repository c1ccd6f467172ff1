"""folder_digest: concatenate a directory tree into a single pasteable text digest."""

__version__ = "0.1.0"
