# testers/chunked_downloader.py
import asyncio
import time
from typing import List, Tuple

import aiohttp

from core.models import ChunkResult, Proxy, Result
from core.tunnel import create_session
from testers.aggregator import aggregate
from utils.logger import log

DEFAULT_LIVENESS_URL = "https://speed.cloudflare.com/__down?bytes={size}"
READ_SIZE = 32 * 1024


def chunk_size_for(total_size: int, concurrency: int) -> int:
    """每個 worker 請求的字節數，餘數直接丟棄"""
    return max(total_size, 0) // max(concurrency, 1)


def build_liveness_url(template: str, size: int) -> str:
    # 也接受 printf 風格的 %d 占位符
    if '{size}' not in template and '%d' in template:
        return template % size
    return template.format(size=size)


class ChunkedDownloader:
    """
    把總下載量平均分給多個並發 worker，全部通過同一個代理
    每個 worker 有自己的會話、連接和超時
    """

    def __init__(self, liveness_url: str = DEFAULT_LIVENESS_URL, read_size: int = READ_SIZE):
        self.liveness_url = liveness_url
        self.read_size = read_size

    async def run_concurrent_transfer(self, proxy: Proxy, total_size: int,
                                      timeout: float, concurrency: int) -> Result:
        concurrency = max(concurrency, 1)
        chunks, elapsed = await self.fan_out(proxy, total_size, timeout, concurrency)
        return aggregate(proxy.name, chunks, elapsed, concurrency)

    async def fan_out(self, proxy: Proxy, total_size: int, timeout: float,
                      concurrency: int) -> Tuple[List[ChunkResult], float]:
        """
        並發執行所有分塊下載

        Returns:
            (每個 worker 的結果, 從分發到全部結束的牆鐘時間秒數)
        """
        concurrency = max(concurrency, 1)
        size = chunk_size_for(total_size, concurrency)
        url = build_liveness_url(self.liveness_url, size)
        log.debug(f"[{proxy.name}] 分塊下載: {concurrency} x {size} bytes <- {url}")

        start = time.perf_counter()
        outcomes = await asyncio.gather(
            *(self._download_chunk(proxy, url, timeout, i) for i in range(concurrency)),
            return_exceptions=True
        )
        elapsed = time.perf_counter() - start

        chunks: List[ChunkResult] = []
        for i, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                log.debug(f"[{proxy.name}] worker {i} 異常: {type(outcome).__name__}: {outcome}")
                chunks.append(ChunkResult.failed())
            else:
                chunks.append(outcome)
        return chunks, elapsed

    async def _download_chunk(self, proxy: Proxy, url: str, timeout: float, index: int) -> ChunkResult:
        start = time.perf_counter()
        ttfb = None
        written = 0

        try:
            async with create_session(proxy, timeout) as session:
                async with session.get(url) as response:
                    if response.status - 200 > 100:
                        log.debug(f"[{proxy.name}] worker {index} HTTP {response.status}")
                        return ChunkResult.failed()
                    ttfb = (time.perf_counter() - start) * 1000

                    async for data in response.content.iter_chunked(self.read_size):
                        written += len(data)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            if ttfb is None:
                log.debug(f"[{proxy.name}] worker {index} 連接失敗: {type(e).__name__}: {e}")
                return ChunkResult.failed()
            # 已經收到的字節仍然計入
            log.debug(f"[{proxy.name}] worker {index} 傳輸中斷 ({written} bytes): {type(e).__name__}")

        if written == 0:
            log.debug(f"[{proxy.name}] worker {index} 沒有收到數據")
            return ChunkResult.failed()

        log.debug(f"[{proxy.name}] worker {index} 完成: {written} bytes, TTFB {ttfb:.0f}ms")
        return ChunkResult(bytes_transferred=written, ttfb=ttfb, ok=True)
