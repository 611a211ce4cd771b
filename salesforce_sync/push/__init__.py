"""推送模块"""

from .push_worker import PushWorker
from .processor import PushQueueProcessor, RestPushProcessor, PushQueueProcessorManager
from .push_queue import PushQueue
from .change_capture import ChangeCapture

__all__ = [
    "PushWorker", "PushQueueProcessor", "RestPushProcessor",
    "PushQueueProcessorManager", "PushQueue", "ChangeCapture"
]
