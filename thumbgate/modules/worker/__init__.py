"""
Worker Module - Black Box Interface

Purpose: Run blocking OMERO work on a bounded number of slots
Interface: WorkerPool.bind(), WorkerPool.start(), WorkerPool.stop(), WorkerPool.health()
Hidden: Thread pool, message queue, per-message session lifecycle

The pool size bounds the number of concurrently open OMERO sessions.
"""

from .pool import DEFAULT_POOL_SIZE, Job, PoolHealth, SlotState, WorkerPool

__all__ = ["DEFAULT_POOL_SIZE", "Job", "PoolHealth", "SlotState", "WorkerPool"]
