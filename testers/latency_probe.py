# testers/latency_probe.py
import asyncio
import time
from typing import Any, Dict, List, Optional

import aiohttp

from core.models import FAILED, LatencyStats, Proxy
from core.tunnel import create_session
from utils.logger import log

DEFAULT_PROBE_URL = "https://www.gstatic.com/generate_204"


def jitter(rtts: List[float]) -> float:
    """相鄰兩次 RTT 差值絕對值的平均"""
    if len(rtts) < 2:
        return 0.0
    return sum(abs(rtts[i + 1] - rtts[i]) for i in range(len(rtts) - 1)) / (len(rtts) - 1)


def summarize(rtts: List[float], sent: int) -> LatencyStats:
    if sent <= 0:
        return LatencyStats()
    if not rtts:
        return LatencyStats(latency=FAILED, jitter=FAILED, packet_loss=100.0, sent=sent, received=0)
    return LatencyStats(
        latency=sum(rtts) / len(rtts),
        jitter=jitter(rtts),
        packet_loss=(sent - len(rtts)) / sent * 100,
        sent=sent,
        received=len(rtts),
    )


class LatencyProbe:
    """
    不傳大文件，只發若干個輕量請求估算延遲、抖動和丟包
    每次探測都重新建立隧道，延遲包含隧道建立的開銷
    """

    def __init__(self, url: str = DEFAULT_PROBE_URL, count: int = 4, interval: float = 0):
        self.url = url
        self.count = max(count, 1)
        self.interval = interval

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "LatencyProbe":
        latency_test = config.get('latency_test', {})
        return cls(
            url=latency_test.get('url', DEFAULT_PROBE_URL),
            count=latency_test.get('count', 4),
            interval=latency_test.get('interval', 0),
        )

    async def probe(self, proxy: Proxy, timeout: float) -> LatencyStats:
        rtts: List[float] = []
        async with create_session(proxy, timeout) as session:
            for i in range(self.count):
                if i and self.interval > 0:
                    await asyncio.sleep(self.interval)
                rtt = await self._probe_once(session, proxy)
                if rtt is not None:
                    rtts.append(rtt)

        stats = summarize(rtts, self.count)
        log.debug(f"[{proxy.name}] 延遲探測: {stats.received}/{stats.sent} 成功, "
                  f"平均 {stats.latency:.0f}ms, 抖動 {stats.jitter:.0f}ms")
        return stats

    async def _probe_once(self, session: aiohttp.ClientSession, proxy: Proxy) -> Optional[float]:
        start = time.perf_counter()
        try:
            async with session.get(self.url, allow_redirects=False) as response:
                elapsed = (time.perf_counter() - start) * 1000
                # 任何小于500的状态码都表示连接成功
                if response.status < 500:
                    return elapsed
                log.debug(f"[{proxy.name}] 探測返回 {response.status}")
                return None
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            log.debug(f"[{proxy.name}] 探測失敗: {type(e).__name__}: {e}")
            return None
