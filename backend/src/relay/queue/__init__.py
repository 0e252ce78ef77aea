"""Durable delivery job queue."""
from relay.queue.base import JobHandle, JobQueue, QueueStats
from relay.queue.sql import SqlJobQueue

__all__ = ["JobHandle", "JobQueue", "QueueStats", "SqlJobQueue"]
