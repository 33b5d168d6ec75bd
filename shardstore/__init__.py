"""State machines and clients for a sharded key/value service and its shard controller."""

__version__ = "0.1.0"