"""File storage with chunked, checksummed upload and download and a broker image subscriber."""

__version__ = "0.1.0"