# core/url_proxy.py
# 作者: proxybench team
"""
以 URL 描述的代理（socks5 / socks4 / http）
握手交給 PySocks 在線程池裡完成，本模組只負責適配 Proxy 接口
"""
import asyncio
import socket
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote, urlparse

import socks

from core.models import Proxy, ProxyType
from utils.config_utils import ConfigError
from utils.logger import log

SCHEME_TYPES = {
    'socks5': ProxyType.SOCKS5,
    'socks4': ProxyType.SOCKS4,
    'http': ProxyType.HTTP,
}

PYSOCKS_TYPES = {
    ProxyType.SOCKS5: socks.SOCKS5,
    ProxyType.SOCKS4: socks.SOCKS4,
    ProxyType.HTTP: socks.HTTP,
}

DEFAULT_PORTS = {
    ProxyType.SOCKS5: 1080,
    ProxyType.SOCKS4: 1080,
    ProxyType.HTTP: 8080,
}


class UrlProxy(Proxy):
    """Proxy backed by a socks5/socks4/http URL."""

    def __init__(self, name: str, url: str, connect_timeout: float = 10,
                 config: Optional[Dict[str, Any]] = None):
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        if scheme not in SCHEME_TYPES or not parsed.hostname:
            raise ConfigError(f"代理 {name} 使用了不支持的地址: {url}")
        self._name = name
        self._type = SCHEME_TYPES[scheme]
        self._url = url
        self._connect_timeout = connect_timeout
        self._config = config

        try:
            port = parsed.port or DEFAULT_PORTS[self._type]
        except ValueError as e:
            raise ConfigError(f"代理 {name} 端口無效: {url}") from e
        self._server = (parsed.hostname, port)
        self._username = unquote(parsed.username) if parsed.username else None
        self._password = unquote(parsed.password) if parsed.password else None

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> ProxyType:
        return self._type

    @property
    def config(self) -> Optional[Dict[str, Any]]:
        return self._config

    @property
    def server(self):
        return self._server

    async def open_tunnel(self, host: str, port: int) -> socket.socket:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._dial, host, port)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # 握手線程無法中斷，完成後由回調關閉沒人接收的 socket
            future.add_done_callback(_close_orphan)
            raise

    def _dial(self, host: str, port: int) -> socket.socket:
        sock = socks.socksocket()
        sock.set_proxy(PYSOCKS_TYPES[self._type], self._server[0], self._server[1],
                       rdns=True, username=self._username, password=self._password)
        sock.settimeout(self._connect_timeout)
        try:
            # socks.ProxyError 是 OSError 的子類，直接向上拋
            sock.connect((host, port))
        except BaseException:
            sock.close()
            raise

        # 握手完成後換成普通 socket 交給事件循環
        plain = socket.socket(sock.family, socket.SOCK_STREAM, sock.proto, fileno=sock.detach())
        plain.setblocking(False)
        return plain


def _close_orphan(future: "asyncio.Future[socket.socket]"):
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()
    log.debug("關閉超時後才完成握手的隧道")


def _clash_socks5(p: Dict[str, Any]) -> Optional[str]:
    try:
        return _build_url('socks5', p['server'], int(p['port']), p.get('username'), p.get('password'))
    except (KeyError, ValueError) as e:
        log.debug(f"Skipping Clash socks5 node due to bad field: {e}")
        return None


def _clash_http(p: Dict[str, Any]) -> Optional[str]:
    try:
        return _build_url('http', p['server'], int(p['port']), p.get('username'), p.get('password'))
    except (KeyError, ValueError) as e:
        log.debug(f"Skipping Clash http node due to bad field: {e}")
        return None


def _build_url(scheme: str, server: str, port: int, username: Optional[str], password: Optional[str]) -> str:
    auth = ''
    if username:
        auth = quote(str(username), safe='')
        if password:
            auth += ':' + quote(str(password), safe='')
        auth += '@'
    if ':' in server and not server.startswith('['):
        server = f"[{server}]"
    return f"{scheme}://{auth}{server}:{port}"


def parse_clash_entry(p: Dict[str, Any]) -> Optional[str]:
    """把 Clash 格式的 socks5 / http 節點轉換成代理 URL，其他類型返回 None"""
    proxy_type = p.get('type')
    if proxy_type == 'socks5':
        return _clash_socks5(p)
    elif proxy_type == 'http':
        return _clash_http(p)
    return None


def load_proxies(entries: List[Dict[str, Any]], connect_timeout: float = 10) -> Dict[str, Proxy]:
    """
    從配置的 proxies 列表構建代理

    Args:
        entries: [{'name': ..., 'url': ...}, ...]，也接受 Clash 格式的
            {'name', 'type', 'server', 'port', 'username', 'password'}
        connect_timeout: 建立隧道的超時（秒）

    Returns:
        名稱 -> Proxy，名稱重複時報錯
    """
    proxies: Dict[str, Proxy] = {}
    for i, entry in enumerate(entries or []):
        if not isinstance(entry, dict) or not (entry.get('url') or entry.get('type')):
            raise ConfigError(f"proxy {i}: 缺少 url 或 type 字段")

        url = entry.get('url') or parse_clash_entry(entry)
        if not url:
            # ss / vmess 等協議需要外部適配器
            log.debug(f"跳過 {entry.get('name', i)} ({entry.get('type')}): 沒有可用的隧道實現")
            continue

        name = str(entry.get('name') or url)
        if name in proxies:
            raise ConfigError(f"proxy {name} is the duplicate name")
        proxies[name] = UrlProxy(name, url, connect_timeout=connect_timeout, config=entry)
    log.debug(f"載入 {len(proxies)} 個代理")
    return proxies
