"""推送队列处理器插件"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List

from ..db.models import PushQueueItem
from ..errors import AuthorizationError, ConfigurationError
from ..remote.client import RestClient
from .push_worker import PushWorker


class PushQueueProcessor(ABC):
    """推送队列处理器接口"""

    @abstractmethod
    def process(self, items: List[PushQueueItem]) -> None:
        """
        处理一批已认领的队列项

        每项成功后从队列删除，失败时调用 fail_item。

        Raises:
            AuthorizationError: 整批中止，剩余队列项保持不变
        """
        pass


class RestPushProcessor(PushQueueProcessor):
    """通过 REST 接口逐项推送"""

    def __init__(self, queue, worker: PushWorker, client: RestClient):
        self.queue = queue
        self.worker = worker
        self.client = client

    def process(self, items: List[PushQueueItem]) -> None:
        if not self.client.is_authorized():
            raise AuthorizationError("Salesforce client not authorized.")

        for item in items:
            try:
                self.worker.process_item(item)
                self.queue.delete_item(item)
            except AuthorizationError:
                raise
            except Exception as e:
                self.queue.fail_item(item, e)


class PushQueueProcessorManager:
    """处理器插件注册表"""

    def __init__(self):
        self._factories: Dict[str, Callable[[], PushQueueProcessor]] = {}

    def register(self, name: str, factory: Callable[[], PushQueueProcessor]) -> None:
        self._factories[name] = factory

    def definitions(self) -> List[str]:
        return list(self._factories)

    def create_instance(self, name: str) -> PushQueueProcessor:
        if name not in self._factories:
            raise ConfigurationError(f"Unknown push queue processor: {name}")
        return self._factories[name]()
