"""
Stream Sender - recurring stream-ingest load tests against a broadcaster.
"""

__version__ = "0.1.0"
