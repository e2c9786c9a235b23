"""Connection pool, reconnecting connections and transactions for EdgeDB clients."""

__version__ = "0.1.0"