"""
监控指标收集器

按方向（push / pull / delete）统计同步结果，跟踪推送队列积压，
健康状态变差时通过 webhook 告警。
"""
import json
import threading
import time
from collections import Counter, defaultdict, deque
from datetime import datetime
from typing import Any, Dict, List, Optional
from loguru import logger
import requests

from ..config.config import MonitorConfig


DIRECTIONS = ('push', 'pull', 'delete')

# 健康阈值
BACKLOG_DEGRADED = 500
BACKLOG_UNHEALTHY = 1000
OLDEST_PENDING_DEGRADED = 3600  # 最早待推送项等待秒数
FAILING_DEGRADED = 50
ALERT_COOLDOWN = 900  # 同一状态的告警间隔（秒）


class MetricsCollector:
    """监控指标收集器"""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self._lock = threading.Lock()

        # {direction: {status: count}}
        self.sync_counters = defaultdict(Counter)
        self.durations = {d: deque(maxlen=100) for d in DIRECTIONS}

        self.errors = deque(maxlen=1000)
        self.error_types = Counter()

        self.queue_stats: Dict[str, Any] = {}
        self.start_time = datetime.now()
        self._last_alert: Dict[str, float] = {}

    def record_sync(self, direction: str, status: str, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self.sync_counters[direction][status] += count
            self.sync_counters[direction]['total'] += count

    def record_sync_duration(self, direction: str, duration_seconds: float) -> None:
        with self._lock:
            self.durations.setdefault(direction, deque(maxlen=100)).append(duration_seconds)

    def record_error(self, error_type: str, error_message: str) -> None:
        """记录错误，error_type 一般是异常类名或线程名"""
        with self._lock:
            self.error_types[error_type] += 1
            self.errors.append({
                'type': error_type,
                'message': error_message,
                'timestamp': datetime.now()
            })

    def update_queue_stats(self, stats: Dict[str, Any]) -> None:
        """更新推送队列统计（PushQueue.get_queue_stats 的结果）"""
        with self._lock:
            self.queue_stats = dict(stats)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            success_rates = {}
            for direction, counters in self.sync_counters.items():
                total = counters['total']
                success_rates[direction] = round(counters['success'] / total * 100, 2) if total else 100.0

            avg_durations = {
                direction: round(sum(values) / len(values), 3)
                for direction, values in self.durations.items() if values
            }

            oldest = self.queue_stats.get('oldest_pending')
            return {
                'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
                'sync_counters': {k: dict(v) for k, v in self.sync_counters.items()},
                'success_rates': success_rates,
                'average_sync_duration': avg_durations,
                'queue_stats': dict(self.queue_stats),
                'oldest_pending_age': int(time.time() - oldest) if oldest else 0,
                'error_types': dict(self.error_types),
                'recent_errors': list(self.errors)[-10:],
                'timestamp': datetime.now().isoformat()
            }

    def get_health_status(self) -> Dict[str, Any]:
        """
        评估健康状态

        授权失败或队列严重积压为 unhealthy；成功率偏低、积压、
        长时间未推送或失败项过多为 degraded。
        """
        metrics = self.get_metrics()
        issues: List[str] = []
        unhealthy = False

        if metrics['error_types'].get('AuthorizationError'):
            unhealthy = True
            issues.append("Salesforce authorization failures recorded")

        for direction, rate in metrics['success_rates'].items():
            if rate < 90:
                issues.append(f"{direction} success rate is {rate}%")

        by_status = metrics['queue_stats'].get('by_status', {})
        pending = by_status.get('pending', 0)
        failing = by_status.get('failing', 0)
        if pending > BACKLOG_UNHEALTHY:
            unhealthy = True
            issues.append(f"Push queue backlog: {pending} pending items")
        elif pending > BACKLOG_DEGRADED:
            issues.append(f"Push queue backlog: {pending} pending items")

        if failing > FAILING_DEGRADED:
            issues.append(f"{failing} push queue items are failing")

        if metrics['oldest_pending_age'] > OLDEST_PENDING_DEGRADED:
            issues.append(f"Oldest push queue item waiting {metrics['oldest_pending_age']}s")

        status = 'unhealthy' if unhealthy else ('degraded' if issues else 'healthy')
        return {
            'status': status,
            'issues': issues,
            'metrics_summary': {
                'uptime_hours': round(metrics['uptime_seconds'] / 3600, 2),
                'success_rates': metrics['success_rates'],
                'queue_pending': pending,
                'queue_failing': failing,
                'errors': sum(metrics['error_types'].values())
            }
        }

    def send_alert(self, alert_type: str, message: str, details: Optional[Dict] = None) -> bool:
        """发送告警到 webhook，同一类型在冷却期内只发送一次"""
        if not self.config.alert_webhook:
            return False

        now = time.time()
        if now - self._last_alert.get(alert_type, 0) < ALERT_COOLDOWN:
            logger.debug(f"Alert {alert_type} suppressed (cooldown)")
            return False

        payload = {
            'type': alert_type,
            'message': message,
            'details': details or {},
            'timestamp': datetime.now().isoformat(),
            'service': 'salesforce_sync'
        }
        try:
            response = requests.post(self.config.alert_webhook, json=payload, timeout=5)
        except requests.RequestException as e:
            logger.error(f"Error sending alert: {e}")
            return False

        if response.status_code >= 300:
            logger.error(f"Alert webhook returned {response.status_code}: {response.text}")
            return False

        self._last_alert[alert_type] = now
        return True

    def check_and_alert(self) -> None:
        health = self.get_health_status()
        if health['status'] == 'unhealthy':
            self.send_alert('CRITICAL', 'Salesforce sync is unhealthy', health)
        elif health['status'] == 'degraded':
            self.send_alert('WARNING', 'Salesforce sync is degraded', health)

    def export_metrics(self, format: str = 'json') -> str:
        """导出指标（json 或 prometheus 文本格式）"""
        metrics = self.get_metrics()

        if format == 'json':
            return json.dumps(metrics, ensure_ascii=False, indent=2, default=str)
        if format != 'prometheus':
            raise ValueError(f"Unsupported metrics format: {format}")

        lines = [
            '# TYPE salesforce_sync_uptime_seconds gauge',
            f'salesforce_sync_uptime_seconds {metrics["uptime_seconds"]:.0f}',
            '# TYPE salesforce_sync_total counter',
        ]
        for direction, counters in metrics['sync_counters'].items():
            for status, count in counters.items():
                if status != 'total':
                    lines.append(
                        f'salesforce_sync_total{{direction="{direction}",status="{status}"}} {count}'
                    )

        lines.append('# TYPE salesforce_push_queue_items gauge')
        for mapping_id, count in metrics['queue_stats'].get('by_mapping', {}).items():
            lines.append(f'salesforce_push_queue_items{{mapping="{mapping_id}"}} {count}')
        failing = metrics['queue_stats'].get('by_status', {}).get('failing', 0)
        lines.append(f'salesforce_push_queue_failing {failing}')
        lines.append(f'salesforce_push_queue_oldest_age_seconds {metrics["oldest_pending_age"]}')

        lines.append('# TYPE salesforce_sync_errors_total counter')
        for error_type, count in metrics['error_types'].items():
            lines.append(f'salesforce_sync_errors_total{{type="{error_type}"}} {count}')

        return '\n'.join(lines)
