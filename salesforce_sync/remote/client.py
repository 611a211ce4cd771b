"""
Salesforce REST 客户端封装
"""
import threading
from typing import Dict, List, Any, Optional
from urllib.parse import quote

import requests
from loguru import logger

from ..config.config import SalesforceConfig
from ..errors import RemoteAPIError, AuthorizationError
from .sobject import SObject, SFID


class RestClient:
    """Salesforce REST 客户端"""

    def __init__(self, config: SalesforceConfig,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.access_token = config.access_token
        self._auth_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return f"{self.config.instance_url.rstrip('/')}/services/data/{self.config.api_version}"

    def is_authorized(self) -> bool:
        """是否具备调用凭证"""
        return bool(self.config.instance_url) and bool(
            self.access_token or self.config.refresh_token
        )

    def refresh_access_token(self) -> None:
        """使用 refresh token 重新获取 access token"""
        if not self.config.refresh_token:
            raise AuthorizationError("Salesforce client not authorized: no refresh token")

        with self._auth_lock:
            try:
                response = self.session.post(
                    f"{self.config.login_url.rstrip('/')}/services/oauth2/token",
                    data={
                        'grant_type': 'refresh_token',
                        'refresh_token': self.config.refresh_token,
                        'client_id': self.config.client_id,
                        'client_secret': self.config.client_secret,
                    },
                    timeout=self.config.timeout
                )
            except requests.RequestException as e:
                raise RemoteAPIError(f"Token refresh failed: {e}") from e

            if response.status_code != 200:
                raise AuthorizationError(
                    "Salesforce token refresh rejected",
                    response.status_code,
                    response.text
                )

            payload = response.json()
            self.access_token = payload['access_token']
            if payload.get('instance_url'):
                self.config.instance_url = payload['instance_url']
            logger.info("Salesforce access token refreshed")

    def api_call(self, path: str, params: Optional[Dict[str, Any]] = None,
                 method: str = 'GET', query: Optional[Dict[str, Any]] = None,
                 expected_status: Optional[List[int]] = None) -> requests.Response:
        """
        调用 REST API

        Args:
            path: 相对于 /services/data/vXX.X 的路径，或以 /services 开头的绝对路径
            params: 请求体
            method: HTTP 方法
            query: 查询参数
            expected_status: 视为成功的状态码列表，默认 2xx

        Returns:
            requests.Response

        Raises:
            AuthorizationError: 认证失败
            RemoteAPIError: 传输错误或 4xx/5xx
        """
        if not self.is_authorized():
            raise AuthorizationError("Salesforce client not authorized")
        if not self.access_token:
            self.refresh_access_token()

        response = self._send(path, params, method, query)
        if response.status_code == 401 and self.config.refresh_token:
            self.refresh_access_token()
            response = self._send(path, params, method, query)

        if response.status_code == 401:
            raise AuthorizationError(
                "Salesforce rejected the access token", 401, response.text
            )

        ok = (response.status_code in expected_status) if expected_status \
            else 200 <= response.status_code < 300
        if not ok:
            raise RemoteAPIError(
                f"{method} {path} failed: {self._error_message(response)}",
                response.status_code,
                response.text
            )
        return response

    def _send(self, path: str, params: Optional[Dict[str, Any]], method: str,
              query: Optional[Dict[str, Any]]) -> requests.Response:
        if path.startswith('/services'):
            url = self.config.instance_url.rstrip('/') + path
        else:
            url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            return self.session.request(
                method,
                url,
                json=params,
                params=query,
                headers={
                    'Authorization': f"Bearer {self.access_token}",
                    'Content-Type': 'application/json',
                },
                timeout=self.config.timeout
            )
        except requests.RequestException as e:
            raise RemoteAPIError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or str(response.status_code)
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict):
            return data.get('message') or data.get('error') or data.get('errorCode') or str(data)
        return str(data)

    def query(self, soql: str) -> List[SObject]:
        """执行 SOQL 查询，自动跟随分页"""
        response = self.api_call('query', query={'q': soql})
        payload = response.json()
        records = list(payload.get('records', []))

        while not payload.get('done', True) and payload.get('nextRecordsUrl'):
            response = self.api_call(payload['nextRecordsUrl'])
            payload = response.json()
            records.extend(payload.get('records', []))

        logger.debug(f"Query returned {len(records)} records")
        return [SObject(record) for record in records]

    def object_create(self, name: str, params: Dict[str, Any]) -> SFID:
        """创建记录"""
        response = self.api_call(f"sobjects/{name}", self._clean(params), 'POST')
        sfid = SFID(response.json()['id'])
        logger.debug(f"Created {name} {sfid}")
        return sfid

    def object_update(self, name: str, sfid, params: Dict[str, Any]) -> None:
        """更新记录"""
        self.api_call(f"sobjects/{name}/{sfid}", self._clean(params), 'PATCH')
        logger.debug(f"Updated {name} {sfid}")

    def object_upsert(self, name: str, key: str, value: Any,
                      params: Dict[str, Any]) -> SFID:
        """
        按外部键字段 upsert 记录

        Returns:
            记录 ID。更新时接口返回 204 无内容，此时按外部键读取记录获取 ID
        """
        params = self._clean(params)
        # 键字段通过 URL 传递，不能出现在请求体中
        params.pop(key, None)
        path = f"sobjects/{name}/{key}/{quote(str(value), safe='')}"
        response = self.api_call(path, params, 'PATCH')

        if response.status_code == 204 or not response.content:
            existing = self.object_read_by_external_id(name, key, value)
            return existing.id()
        return SFID(response.json()['id'])

    def object_delete(self, name: str, sfid, throw_exception: bool = False) -> None:
        """删除记录，默认忽略记录已不存在的 404"""
        try:
            self.api_call(f"sobjects/{name}/{sfid}", method='DELETE')
        except RemoteAPIError as e:
            if throw_exception or e.status_code != 404:
                raise
            logger.debug(f"{name} {sfid} already deleted")

    def object_read(self, name: str, sfid) -> SObject:
        """读取记录"""
        response = self.api_call(f"sobjects/{name}/{sfid}")
        return SObject(response.json())

    def object_read_by_external_id(self, name: str, field: str, value: Any) -> SObject:
        """按外部键读取记录"""
        response = self.api_call(f"sobjects/{name}/{field}/{quote(str(value), safe='')}")
        return SObject(response.json())

    def get_deleted(self, name: str, start: str, end: str) -> Dict[str, Any]:
        """
        获取时间窗口内被删除的记录

        Returns:
            {deletedRecords: [{id, deletedDate}], earliestDateAvailable, latestDateCovered}
        """
        response = self.api_call(
            f"sobjects/{name}/deleted/",
            query={'start': start, 'end': end}
        )
        return response.json()

    @staticmethod
    def _clean(params: Dict[str, Any]) -> Dict[str, Any]:
        """fieldsToNull 为 SOAP 语义，REST 中以显式 null 表示"""
        params = dict(params or {})
        for field in params.pop('fieldsToNull', []) or []:
            params[field] = None
        return params
