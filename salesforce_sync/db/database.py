"""
MySQL 访问封装

推送队列、映射对象和本地实体表共用同一个 DBUtils 连接池。
"""
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pymysql
from pymysql.cursors import Cursor, DictCursor
from dbutils.pooled_db import PooledDB
from loguru import logger

from ..config.config import DatabaseConfig


_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

# 同步表结构，按顺序创建
SYNC_TABLES: List[Tuple[str, str]] = [
    ("salesforce_push_queue", """
        CREATE TABLE IF NOT EXISTS salesforce_push_queue (
            item_id BIGINT AUTO_INCREMENT PRIMARY KEY,
            name VARCHAR(64) NOT NULL,
            entity_id VARCHAR(64) NOT NULL,
            op VARCHAR(32) NOT NULL,
            mapped_object_id BIGINT NULL,
            data JSON,
            failures INT NOT NULL DEFAULT 0,
            expire INT NOT NULL DEFAULT 0,
            claim_token VARCHAR(64) NULL,
            revision INT NOT NULL DEFAULT 0,
            created INT NOT NULL,
            updated INT NOT NULL,
            UNIQUE KEY uk_name_entity (name, entity_id),
            INDEX idx_name_expire (name, expire, created),
            INDEX idx_claim_token (claim_token)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """),
    ("salesforce_mapped_object", """
        CREATE TABLE IF NOT EXISTS salesforce_mapped_object (
            id BIGINT AUTO_INCREMENT PRIMARY KEY,
            entity_id VARCHAR(64) NULL,
            entity_type_id VARCHAR(64) NOT NULL,
            salesforce_id VARCHAR(18) NULL,
            salesforce_mapping VARCHAR(64) NOT NULL,
            entity_updated INT NULL,
            last_sync INT NULL,
            last_sync_action VARCHAR(32) NULL,
            last_sync_status TINYINT(1) NULL,
            revision_log_message TEXT,
            force_pull TINYINT(1) NOT NULL DEFAULT 0,
            created INT NOT NULL,
            changed INT NOT NULL,
            UNIQUE KEY uk_sfid_mapping (salesforce_id, salesforce_mapping),
            UNIQUE KEY uk_entity_mapping (entity_type_id, entity_id, salesforce_mapping),
            INDEX idx_salesforce_id (salesforce_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """),
]


def check_identifier(name: str) -> str:
    """表名和列名只能是普通标识符，防止拼接进 SQL 时注入"""
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name}")
    return name


class Database:
    """数据库操作类"""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = PooledDB(
            creator=pymysql,
            maxconnections=config.pool_size,
            mincached=1,
            maxcached=config.pool_size,
            blocking=True,
            ping=1,
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            database=config.database,
            charset=config.charset,
            cursorclass=DictCursor
        )
        logger.info(f"MySQL pool ready: {config.user}@{config.host}:{config.port}/{config.database}")

    @contextmanager
    def cursor(self, commit: bool = False) -> Iterator[Cursor]:
        """
        从连接池取连接并返回游标

        commit 为 True 时语句成功后提交，出错时回滚。
        """
        conn = self._pool.connection()
        cursor = conn.cursor()
        try:
            yield cursor
            if commit:
                conn.commit()
        except pymysql.MySQLError as e:
            conn.rollback()
            logger.error(f"MySQL error: {e}")
            raise
        finally:
            cursor.close()
            conn.close()

    def execute(self, sql: str, params: Optional[Sequence] = None) -> int:
        """执行写语句，返回影响行数"""
        with self.cursor(commit=True) as cursor:
            return cursor.execute(sql, params)

    def query(self, sql: str, params: Optional[Sequence] = None) -> List[Dict[str, Any]]:
        with self.cursor() as cursor:
            cursor.execute(sql, params)
            return list(cursor.fetchall())

    def query_one(self, sql: str, params: Optional[Sequence] = None) -> Optional[Dict[str, Any]]:
        with self.cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.fetchone()

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """插入一行，返回自增 ID"""
        columns = ', '.join(check_identifier(c) for c in data)
        placeholders = ', '.join(['%s'] * len(data))
        sql = f"INSERT INTO {check_identifier(table)} ({columns}) VALUES ({placeholders})"

        with self.cursor(commit=True) as cursor:
            cursor.execute(sql, list(data.values()))
            return cursor.lastrowid

    def update(self, table: str, data: Dict[str, Any], where: Dict[str, Any]) -> int:
        set_clause = ', '.join(f"{check_identifier(c)} = %s" for c in data)
        where_clause, where_params = self._where(where)
        sql = f"UPDATE {check_identifier(table)} SET {set_clause} WHERE {where_clause}"
        return self.execute(sql, list(data.values()) + where_params)

    def delete(self, table: str, where: Dict[str, Any]) -> int:
        where_clause, where_params = self._where(where)
        return self.execute(f"DELETE FROM {check_identifier(table)} WHERE {where_clause}", where_params)

    @staticmethod
    def _where(where: Dict[str, Any]) -> Tuple[str, List[Any]]:
        if not where:
            raise ValueError("Refusing to run an unconditional UPDATE/DELETE")
        clause = ' AND '.join(f"{check_identifier(c)} = %s" for c in where)
        return clause, list(where.values())

    def create_sync_tables(self) -> None:
        """创建推送队列和映射对象表"""
        for table, ddl in SYNC_TABLES:
            self.execute(ddl)
            logger.debug(f"Table {table} verified")
        logger.info("Sync tables created/verified")

    def test_connection(self) -> bool:
        try:
            self.query_one("SELECT 1 AS ok")
        except pymysql.MySQLError as e:
            logger.error(f"Database connection test failed: {e}")
            return False
        return True
