"""Salesforce 记录与 ID 类型"""

import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional


SUFFIX_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ012345"


class SFID:
    """
    Salesforce 记录 ID

    15 位大小写敏感 ID 会被转换为 18 位大小写不敏感形式，
    两种形式比较时视为相等。
    """

    def __init__(self, value: str):
        value = str(value or "")
        if len(value) not in (15, 18) or not value.isalnum():
            raise ValueError(f"Invalid Salesforce ID: {value!r}")
        if len(value) == 15:
            value = value + self._checksum(value)
        self.value = value

    @staticmethod
    def _checksum(sfid: str) -> str:
        suffix = ""
        for chunk in range(3):
            flags = 0
            for position in range(5):
                char = sfid[chunk * 5 + position]
                if "A" <= char <= "Z":
                    flags += 1 << position
            suffix += SUFFIX_CHARS[flags]
        return suffix

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"SFID({self.value!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, SFID):
            return self.value == other.value
        if isinstance(other, str):
            try:
                return self.value == SFID(other).value
            except ValueError:
                return False
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)


class SObject:
    """Salesforce 记录"""

    def __init__(self, data: Dict[str, Any]):
        data = dict(data)
        if 'id' not in data and 'Id' not in data:
            raise ValueError("Refused to instantiate SObject without ID")
        raw_id = data.pop('id', None) or data.pop('Id', None)
        data.pop('Id', None)
        self._id = SFID(raw_id)

        attributes = data.pop('attributes', None) or {}
        if 'type' not in attributes:
            raise ValueError("Refused to instantiate SObject without Type")
        self._type = attributes['type']

        self._fields = dict(data)
        self._fields['Id'] = str(self._id)

    def id(self) -> SFID:
        return self._id

    def type(self) -> str:
        return self._type

    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def field(self, key: str) -> Any:
        """获取字段值，字段不存在时抛出 KeyError"""
        if key not in self._fields:
            raise KeyError(f"Field {key} not found on {self._type} {self._id}")
        return self._fields[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._fields.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self._fields)
        data['attributes'] = {'type': self._type}
        return data

    def __repr__(self) -> str:
        return f"SObject({self._type}, {self._id})"


_OFFSET_RE = re.compile(r'([+-]\d{2})(\d{2})$')


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """解析 Salesforce 日期时间字符串（如 2024-01-01T10:00:00.000+0000）"""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = _OFFSET_RE.sub(r'\1:\2', text)
    # fromisoformat 只接受 3 或 6 位小数
    if '.' in text:
        head, _, rest = text.partition('.')
        digits = re.match(r'\d+', rest).group(0)
        tail = rest[len(digits):]
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail}"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_timestamp(value: Optional[str]) -> Optional[int]:
    """Salesforce 日期时间字符串转 Unix 时间戳"""
    parsed = parse_datetime(value)
    return int(parsed.timestamp()) if parsed else None


def format_datetime(timestamp: float) -> str:
    """Unix 时间戳转 Salesforce 接受的 ISO-8601 UTC 字符串"""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
