"""拉取模块"""

from .queue_handler import PullQueueItem, PullQueueHandler
from .pull_worker import PullProcessor
from .delete_handler import DeleteHandler

__all__ = ["PullQueueItem", "PullQueueHandler", "PullProcessor", "DeleteHandler"]
