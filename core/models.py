# core/models.py
# 作者: proxybench team
import abc
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# 測速完全失敗時的哨兵值
FAILED = -1.0
# 國家代碼 / IP 未知時的標記
UNKNOWN = "NIL"


class ProxyType(str, Enum):
    """Proxy kinds understood by the adapter layer."""
    SHADOWSOCKS = "ss"
    SHADOWSOCKSR = "ssr"
    SNELL = "snell"
    SOCKS4 = "socks4"
    SOCKS5 = "socks5"
    HTTP = "http"
    VMESS = "vmess"
    VLESS = "vless"
    TROJAN = "trojan"
    HYSTERIA = "hysteria"
    HYSTERIA2 = "hysteria2"
    WIREGUARD = "wireguard"
    TUIC = "tuic"
    # 以下為策略組 / 偽節點，不參與測速
    DIRECT = "direct"
    REJECT = "reject"
    RELAY = "relay"
    SELECTOR = "select"
    FALLBACK = "fallback"
    URL_TEST = "url-test"
    LOAD_BALANCE = "load-balance"


SKIPPED_TYPES = frozenset({
    ProxyType.DIRECT, ProxyType.REJECT, ProxyType.RELAY, ProxyType.SELECTOR,
    ProxyType.FALLBACK, ProxyType.URL_TEST, ProxyType.LOAD_BALANCE,
})


@dataclass(frozen=True)
class Metadata:
    """Destination of one tunnel."""
    host: str
    port: int

    def __post_init__(self):
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")


class Proxy(abc.ABC):
    """
    外部代理適配層提供的能力
    核心只借用它打開隧道，不關心具體協議
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        ...

    @property
    @abc.abstractmethod
    def type(self) -> ProxyType:
        ...

    @abc.abstractmethod
    async def open_tunnel(self, host: str, port: int) -> socket.socket:
        """
        通過代理連接到 host:port

        Returns:
            已連接的非阻塞 socket，由調用方負責關閉

        Raises:
            OSError: 隧道建立失敗
        """

    @property
    def config(self) -> Optional[dict]:
        """Original definition of the proxy, used by the YAML export."""
        return None

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r} ({self.type.value})>"


@dataclass(frozen=True)
class ChunkResult:
    """一個下載分塊的測量結果"""
    bytes_transferred: int = 0
    ttfb: float = 0.0  # ms
    ok: bool = False

    @classmethod
    def failed(cls) -> "ChunkResult":
        return cls()


@dataclass(frozen=True)
class LatencyStats:
    latency: float = FAILED  # ms
    jitter: float = FAILED  # ms
    packet_loss: float = 100.0  # %
    sent: int = 0
    received: int = 0


@dataclass(frozen=True)
class Result:
    """單個代理的最終測速結果，發送給報告層後不再修改"""
    name: str
    bandwidth: float = FAILED  # bytes/s
    ttfb: float = FAILED  # ms
    latency: float = FAILED  # ms
    jitter: float = FAILED  # ms
    packet_loss: float = FAILED  # %, 未測量時為 -1
    country_code: str = UNKNOWN
    ip: str = UNKNOWN
    downloaded: int = 0
    error: Optional[str] = field(default=None, compare=False)

    @property
    def transfer_ok(self) -> bool:
        return self.downloaded > 0 and self.bandwidth > 0


@dataclass(frozen=True)
class GeoEndpoint:
    url_template: str
    requires_token: bool = False

    def url(self, token: str = "") -> str:
        if self.requires_token:
            return self.url_template.format(token=token)
        return self.url_template
