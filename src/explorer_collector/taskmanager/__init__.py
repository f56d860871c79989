"""Task manager — cron jobs and supervised background loops.

Provides ``TaskManager`` for periodic background tasks:
- Gap scan and backfill (missing layers below the watermark)
- Metrics calculation (entity counts for Prometheus gauges)

and ``Supervisor`` for the crash-only live sync loop.
"""

from __future__ import annotations

from explorer_collector.taskmanager.manager import CronJob, TaskManager
from explorer_collector.taskmanager.supervisor import BackoffPolicy, Supervisor

__all__ = ["BackoffPolicy", "CronJob", "Supervisor", "TaskManager"]
