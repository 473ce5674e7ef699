# core/tunnel.py
import asyncio
import socket
from typing import Any, Dict, List

import aiohttp
from aiohttp.abc import AbstractResolver

from core.models import Metadata, Proxy
from utils.logger import log


class TunnelResolver(AbstractResolver):
    """
    不在本地解析域名，原樣交給代理
    出口 IP 和 DNS 都應該屬於代理那一側
    """

    async def resolve(self, host: str, port: int = 0,
                      family: int = socket.AF_INET) -> List[Dict[str, Any]]:
        return [{
            'hostname': host,
            'host': host,
            'port': port,
            'family': family,
            'proto': 0,
            'flags': 0,
        }]

    async def close(self) -> None:
        pass


class TunnelConnector(aiohttp.TCPConnector):
    """
    所有連接都通過 proxy.open_tunnel 建立的 aiohttp 連接器
    相當於給 HTTP 客戶端換了一個撥號函數，TLS 仍由 aiohttp 在隧道之上完成
    """

    def __init__(self, proxy: Proxy, **kwargs):
        kwargs['resolver'] = TunnelResolver()
        kwargs.setdefault('force_close', True)
        super().__init__(**kwargs)
        self._proxy = proxy

    @property
    def proxy(self) -> Proxy:
        return self._proxy

    async def _wrap_create_connection(self, *args, addr_infos, req, timeout,
                                      client_error=aiohttp.ClientConnectorError, **kwargs):
        host, port = addr_infos[0][4][:2]
        metadata = Metadata(host=host, port=port)
        log.debug(f"[{self._proxy.name}] 打開隧道 -> {metadata.host}:{metadata.port}")

        try:
            sock = await self._proxy.open_tunnel(metadata.host, metadata.port)
        except OSError as e:
            if e.errno is None and isinstance(e, asyncio.TimeoutError):
                raise
            raise client_error(req.connection_key, e) from e

        try:
            return await self._loop.create_connection(*args, **kwargs, sock=sock)
        except BaseException as e:
            # 隧道已經建好但升級失敗（例如 TLS 握手），socket 歸我們關閉
            sock.close()
            if isinstance(e, OSError) and not isinstance(e, asyncio.TimeoutError):
                raise client_error(req.connection_key, e) from e
            raise


def create_session(proxy: Proxy, timeout: float, **kwargs) -> aiohttp.ClientSession:
    """每次調用都返回獨立的會話和連接器，不同 worker 之間不共享連接"""
    connector = TunnelConnector(proxy, limit=0)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout),
        trust_env=False,  # 不使用系統代理
        **kwargs
    )
