"""Local network device discovery with chunked parallel scanning."""

__version__ = "1.0.0"
