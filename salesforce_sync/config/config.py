"""
配置管理模块
"""
import json
import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, fields
from pathlib import Path


@dataclass
class DatabaseConfig:
    """数据库配置"""
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = ""
    charset: str = "utf8mb4"
    pool_size: int = 5


@dataclass
class SalesforceConfig:
    """Salesforce 连接配置"""
    instance_url: str = ""
    api_version: str = "v58.0"
    access_token: str = ""
    refresh_token: str = ""
    client_id: str = ""
    client_secret: str = ""
    login_url: str = "https://login.salesforce.com"
    timeout: int = 30  # 单次远程调用超时（秒）


@dataclass
class SyncConfig:
    """同步配置"""
    push_poll_interval: int = 60  # 推送队列轮询间隔（秒）
    pull_poll_interval: int = 60  # 拉取轮询间隔（秒）
    delete_poll_interval: int = 300  # 删除检测间隔（秒）
    gc_interval: int = 600  # 租约回收间隔（秒）
    global_push_limit: int = 10000  # 单次运行推送上限
    push_lease_time: int = 300  # 队列项租约时长（秒）
    push_queue_processor: str = "rest"
    standalone: bool = False  # 全局独立推送，禁用定时推送
    enable_cache: bool = True  # 是否使用 Redis 保存状态
    delete_initial_days: int = 29
    pull_max_records: int = 2000
    lock_ttl: int = 600


@dataclass
class RedisConfig:
    """Redis 配置"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


@dataclass
class MonitorConfig:
    """监控配置"""
    enable_metrics: bool = True
    alert_webhook: Optional[str] = None
    log_level: str = "INFO"
    log_file: str = "salesforce_sync.log"
    log_max_size: str = "100MB"
    log_backup_count: int = 10
    event_log_level: str = "notice"  # notice / warning / error


# 配置节名 -> 数据类
SECTIONS = {
    'database': DatabaseConfig,
    'salesforce': SalesforceConfig,
    'sync': SyncConfig,
    'redis': RedisConfig,
    'monitor': MonitorConfig,
}

# 凭证类配置可由环境变量覆盖，不必写入配置文件
ENV_OVERRIDES = {
    'SALESFORCE_SYNC_DB_PASSWORD': 'database.password',
    'SALESFORCE_SYNC_INSTANCE_URL': 'salesforce.instance_url',
    'SALESFORCE_SYNC_ACCESS_TOKEN': 'salesforce.access_token',
    'SALESFORCE_SYNC_REFRESH_TOKEN': 'salesforce.refresh_token',
    'SALESFORCE_SYNC_CLIENT_ID': 'salesforce.client_id',
    'SALESFORCE_SYNC_CLIENT_SECRET': 'salesforce.client_secret',
    'SALESFORCE_SYNC_REDIS_PASSWORD': 'redis.password',
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {
        "host": "localhost",
        "port": 3306,
        "user": "root",
        "password": "",
        "database": "salesforce_sync"
    },
    "salesforce": {
        "instance_url": "https://example.my.salesforce.com",
        "client_id": "your_client_id",
        "client_secret": "your_client_secret",
        "refresh_token": "your_refresh_token"
    },
    "sync": {
        "push_poll_interval": 60,
        "pull_poll_interval": 60,
        "delete_poll_interval": 300
    },
    "redis": {
        "host": "localhost",
        "port": 6379
    },
    "monitor": {
        "enable_metrics": True,
        "log_level": "INFO",
        "log_file": "salesforce_sync.log"
    },
    "mappings": [
        {
            "id": "contact",
            "label": "Contact",
            "drupal_entity_type": "user",
            "drupal_bundle": "user",
            "salesforce_object_type": "Contact",
            "key": "Email",
            "sync_triggers": [
                "local_create", "local_update", "local_delete",
                "remote_create", "remote_update", "remote_delete"
            ],
            "field_mappings": [
                {"drupal_field_type": "properties", "drupal_field_value": "mail",
                 "salesforce_field": "Email", "direction": "sync"},
                {"drupal_field_type": "properties", "drupal_field_value": "name",
                 "salesforce_field": "LastName", "direction": "sync"}
            ]
        }
    ]
}


class Config:
    """
    配置管理器

    配置文件为 JSON，按节解析为数据类；mappings 保持原始字典，
    由 MappingStorage.from_config 加载。
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config_file()
        self._data: Dict[str, Any] = {}

        self.database: Optional[DatabaseConfig] = None
        self.salesforce: Optional[SalesforceConfig] = None
        self.sync: Optional[SyncConfig] = None
        self.redis: Optional[RedisConfig] = None
        self.monitor: Optional[MonitorConfig] = None
        self.mappings: List[Dict[str, Any]] = []

        self.load()

    @staticmethod
    def _find_config_file() -> str:
        """依次查找工作目录、用户目录和 /etc 下的配置文件"""
        env_path = os.environ.get('SALESFORCE_SYNC_CONFIG')
        if env_path:
            return env_path

        candidates = [
            Path.cwd() / "config.json",
            Path.cwd() / "config" / "config.json",
            Path.home() / ".salesforce_sync" / "config.json",
            Path("/etc/salesforce_sync/config.json")
        ]
        for path in candidates:
            if path.exists():
                return str(path)
        return str(candidates[0])

    def load(self) -> None:
        """加载配置文件，不存在时写入默认配置"""
        if not os.path.exists(self.config_path):
            self._create_default_config()
        else:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._data = json.load(f)

        self._parse_config()

    def _parse_config(self) -> None:
        for section, cls in SECTIONS.items():
            values = dict(self._data.get(section) or {})
            unknown = set(values) - {f.name for f in fields(cls)}
            if unknown:
                raise ValueError(f"配置节 {section} 包含未知字段: {', '.join(sorted(unknown))}")
            setattr(self, section, cls(**values))

        self.mappings = list(self._data.get('mappings', []))
        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                section, name = key.split('.')
                setattr(getattr(self, section), name, value)

    def _create_default_config(self) -> None:
        self._data = json.loads(json.dumps(DEFAULT_CONFIG))
        self._write(self._data)

    def _write(self, data: Dict[str, Any]) -> None:
        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=4, ensure_ascii=False)

    def save(self) -> None:
        """把当前配置（包括默认值）写回文件"""
        data = {
            section: asdict(getattr(self, section)) if getattr(self, section) else {}
            for section in SECTIONS
        }
        data['mappings'] = self.mappings
        self._write(data)

    def validate(self) -> bool:
        """
        验证配置是否可以启动服务

        Raises:
            ValueError: 缺少连接信息、轮询间隔非法或映射 ID 重复
        """
        if not self.salesforce or not self.salesforce.instance_url:
            raise ValueError("Salesforce 配置缺少 instance_url")

        if not self.salesforce.access_token and not self.salesforce.refresh_token:
            raise ValueError("Salesforce 配置缺少 access_token 或 refresh_token")

        if not self.database or not self.database.host or not self.database.database:
            raise ValueError("数据库配置缺少必要信息")

        for name in ('push_poll_interval', 'pull_poll_interval',
                     'delete_poll_interval', 'gc_interval', 'push_lease_time',
                     'global_push_limit'):
            if getattr(self.sync, name) <= 0:
                raise ValueError(f"同步配置 {name} 必须大于 0")

        ids = [m.get('id') for m in self.mappings]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"映射 ID 重复: {', '.join(map(str, duplicates))}")

        return True

    def get(self, key: str, default: Any = None) -> Any:
        """按点分路径读取原始配置值，如 sync.push_poll_interval"""
        value: Any = self._data
        for part in key.split('.'):
            if not isinstance(value, dict) or value.get(part) is None:
                return default
            value = value[part]
        return value

    def set(self, key: str, value: Any) -> None:
        """按点分路径设置配置值并重新解析"""
        *parents, last = key.split('.')
        data = self._data
        for part in parents:
            data = data.setdefault(part, {})
        data[last] = value
        self._parse_config()

    def reload(self) -> None:
        self.load()
