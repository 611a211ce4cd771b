"""
日志配置

控制台和主日志文件记录全部输出；同步事件（notice / warning / error）
另外写入独立的事件日志，便于运维只看需要处理的问题。
"""
import sys
from pathlib import Path
from loguru import logger

from ..config.config import MonitorConfig
from .events import EVENT_CHANNEL


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | {name}:{line} - {message}"
EVENT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"


def is_sync_event(record) -> bool:
    return record["extra"].get("channel") == EVENT_CHANNEL


def setup_logger(config: MonitorConfig) -> None:
    """按监控配置重建 loguru 输出"""
    logger.remove()

    logger.add(sys.stdout, level=config.log_level, format=CONSOLE_FORMAT, colorize=True)

    if config.log_file:
        log_path = Path(config.log_file)
        logger.add(
            str(log_path),
            level=config.log_level,
            format=FILE_FORMAT,
            rotation=config.log_max_size,
            retention=config.log_backup_count,
            compression="zip",
            encoding="utf-8",
            enqueue=True
        )

        # 同步事件单独成文件，只按数量轮转
        logger.add(
            str(log_path.with_suffix('.events.log')),
            level="INFO",
            format=EVENT_FORMAT,
            filter=is_sync_event,
            rotation=config.log_max_size,
            retention=config.log_backup_count * 2,
            encoding="utf-8",
            enqueue=True
        )

    logger.info(f"Logging to {config.log_file or 'stdout'} at {config.log_level}, "
                f"events from {config.event_log_level}")
