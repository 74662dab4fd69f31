"""Package registry mirror with resumable, ordered replication from uplinks."""

__version__ = "0.1.0"
