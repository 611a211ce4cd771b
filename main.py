#!/usr/bin/env python3
"""
Salesforce 双向同步服务
命令行入口
"""
import argparse
import json
import signal
import sys
import threading
from typing import Optional

import pymysql
from loguru import logger

from salesforce_sync.config.config import Config
from salesforce_sync.core.sync_service import SyncService
from salesforce_sync.errors import NotFoundError
from salesforce_sync.monitor.logger import setup_logger


STATUS_INTERVAL = 60


class SyncApplication:
    """常驻进程：启动同步服务，定期输出状态，收到信号后停止"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.sync_service: Optional[SyncService] = None
        self._shutdown = threading.Event()

    def initialize(self) -> SyncService:
        config = Config(self.config_path)
        config.validate()
        setup_logger(config.monitor)

        logger.info(f"Salesforce sync starting with {config.config_path}")
        logger.info(f"{len(config.mappings)} mappings; push every {config.sync.push_poll_interval}s, "
                    f"pull every {config.sync.pull_poll_interval}s, "
                    f"deletes every {config.sync.delete_poll_interval}s")
        if config.sync.standalone:
            logger.info("Global standalone push: scheduled push processing disabled")

        self.sync_service = SyncService(config)
        return self.sync_service

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        self._shutdown.set()

    def run_forever(self) -> None:
        if self.sync_service is None:
            raise RuntimeError("Application not initialized")

        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

        self.sync_service.start()
        logger.info("Sync service running, press Ctrl+C to stop")
        try:
            while not self._shutdown.wait(STATUS_INTERVAL):
                self._log_status()
        finally:
            self.sync_service.stop()

    def _log_status(self) -> None:
        status = self.sync_service.get_status()
        stats = status['sync_stats']
        queue = status['queue_stats']
        dead = [t['name'] for t in status['threads'] if not t['alive']]

        logger.info(
            f"Uptime {status['uptime_seconds']:.0f}s | "
            f"pushed {stats['push_processed']} | "
            f"pulled {stats['pull_success']} ({stats['pull_failed']} retrying) | "
            f"deleted {stats['deleted']} | "
            f"queue {queue.get('total', 0)} ({queue.get('by_status', {}).get('failing', 0)} failing)"
        )
        if dead:
            logger.warning(f"Stopped threads: {', '.join(dead)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Salesforce bidirectional sync service')
    parser.add_argument('-c', '--config', default=None, help='Path to configuration file')

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--init', action='store_true', help='Write a default configuration file and exit')
    mode.add_argument('--test', action='store_true', help='Test database and Salesforce connections')
    mode.add_argument('--once', action='store_true', help='Run one push, pull and delete pass')
    mode.add_argument('--push-standalone', metavar='MAPPING',
                      help='Process the push queue of a single mapping')
    mode.add_argument('--status', action='store_true', help='Print queue statistics as JSON')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.init:
        config = Config(args.config)
        config.save()
        print(f"Configuration file created: {config.config_path}")
        print("Fill in the salesforce and database sections, then start the service")
        return 0

    app = SyncApplication(args.config)
    try:
        service = app.initialize()
    except (ValueError, ConnectionError, pymysql.MySQLError) as e:
        logger.error(f"Failed to initialize: {e}")
        return 1

    if args.test:
        return 0 if service.test_connections() else 1

    if args.status:
        print(json.dumps(service.get_status(), ensure_ascii=False, indent=2, default=str))
        return 0

    if args.push_standalone:
        try:
            count = service.process_standalone(args.push_standalone)
        except NotFoundError as e:
            logger.error(str(e))
            return 1
        logger.info(f"Processed {count} push queue items for {args.push_standalone}")
        return 0

    if args.once:
        logger.info(f"Single pass finished: {service.run_once()}")
        return 0

    try:
        app.run_forever()
    except ConnectionError as e:
        logger.error(f"Service failed: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
