"""Queue-driven backup pipeline.

A backup run flows through three stages connected by a durable queue:
start-sync → sync-one-podcast (one per podcast) → sync-history.
"""

from pocketcasts_backup.workflow.config import PipelineConfig
from pocketcasts_backup.workflow.messages import StartSync, SyncHistory, SyncOnePodcast
from pocketcasts_backup.workflow.pipeline import BackupPipeline
from pocketcasts_backup.workflow.queue import MessageQueue, QueuedMessage
from pocketcasts_backup.workflow.runner import QueueRunner, WorkerResult

__all__ = [
    "BackupPipeline",
    "MessageQueue",
    "PipelineConfig",
    "QueueRunner",
    "QueuedMessage",
    "StartSync",
    "SyncHistory",
    "SyncOnePodcast",
    "WorkerResult",
]
