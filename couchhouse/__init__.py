"""
couchhouse: replicate a database change feed into ClickHouse in checkpointed batches.
"""

__version__ = "0.1.0"
