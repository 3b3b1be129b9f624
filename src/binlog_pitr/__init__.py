"""
Binlog PITR - continuous binlog capture and point-in-time recovery.

A collector that behaves as a logical replica and persists the binlog stream
as ordered, gap-free segments in object storage, and a recoverer that replays
those segments into a target database up to a recovery point.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
