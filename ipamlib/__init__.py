"""Container IPv4 address management on a replicated Redis store."""

__version__ = '0.1'
