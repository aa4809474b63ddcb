"""
签名证书链的下载与缓存。

公开接口：
- CertificateCache: 以 URL 为键、原始 PEM 字节为值的线程安全缓存
- CertificateFetcher: 命中缓存直接返回，否则通过 httpx 下载并写入缓存

已知限制：缓存条目永不过期；证书是否过期由每次请求的链校验负责。
"""

from __future__ import annotations

import threading
from typing import Dict

import httpx
from loguru import logger

from .errors import FetchError


class CertificateCache:
    """URL -> PEM 字节的缓存。锁只保护字典访问，不会在网络请求期间持有。"""

    def __init__(self) -> None:
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> bytes | None:
        with self._lock:
            return self._entries.get(url)

    def put(self, url: str, data: bytes) -> None:
        with self._lock:
            self._entries[url] = data

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CertificateFetcher:
    """
    按 URL 获取证书链 PEM 字节。
    :param cache: 证书缓存，默认新建一个空缓存。
    :param timeout: 下载超时时间（秒）。
    :param transport: 可选的 httpx 传输层，测试时可注入 MockTransport。
    """

    def __init__(
        self,
        cache: CertificateCache | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.cache = cache if cache is not None else CertificateCache()
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def fetch(self, url: str) -> bytes:
        """
        获取证书链。调用前 URL 必须已经通过格式校验。
        :param url: SignatureCertChainUrl 请求头中的原始 URL 字符串。
        :return: 原始 PEM 字节。
        :raises FetchError: 网络错误、读取错误或非 2xx 响应。
        """
        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"证书缓存命中: {url}")
            return cached

        try:
            resp = self._client.get(url)
            data = resp.read()
        except httpx.HTTPError as e:
            raise FetchError(f"无法下载证书文件 ({url}): {e}") from e

        if not resp.is_success:
            raise FetchError(f"下载证书文件返回 HTTP {resp.status_code} ({url})")

        self.cache.put(url, data)
        logger.info(f"已缓存证书链: {url} ({len(data)} 字节)")
        return data

    def close(self) -> None:
        self._client.close()
