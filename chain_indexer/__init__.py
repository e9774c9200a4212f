"""
Chain Indexer.

Streaming multi-chain contract event indexer with resumable per-user sessions.
"""

__version__ = "0.1.0"
