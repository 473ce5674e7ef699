# testers/node_tester.py
from dataclasses import replace
from typing import Any, Dict, Optional

from core.models import UNKNOWN, Proxy, Result
from output.console import format_bandwidth, format_milliseconds
from testers.aggregator import qualifies_for_geo
from testers.chunked_downloader import DEFAULT_LIVENESS_URL, ChunkedDownloader
from testers.geo_resolver import GeoResolutionError, GeoResolver
from testers.latency_probe import LatencyProbe
from utils.config_utils import parse_token_list
from utils.logger import log


class NodeTester:
    """Runs the full test pipeline for a single proxy."""

    def __init__(self, config: Dict[str, Any],
                 downloader: Optional[ChunkedDownloader] = None,
                 latency_probe: Optional[LatencyProbe] = None,
                 geo_resolver: Optional[GeoResolver] = None):
        self.config = config

        speed_test = config.get('speed_test', {})
        self.download_size = int(speed_test.get('download_size', 100 * 1024 * 1024))
        self.timeout = float(speed_test.get('timeout', 5))
        self.concurrent = max(int(speed_test.get('concurrent', 4)), 1)
        self.fast_mode = bool(speed_test.get('fast_mode', False))

        self.latency_enabled = bool(config.get('latency_test', {}).get('enabled', True))

        geo = config.get('geo', {})
        self.tokens = parse_token_list(geo.get('tokens'))
        # 地理位置 API 同樣走可能很慢的隧道，超時給到測速的兩倍
        self.geo_timeout = self.timeout * float(geo.get('timeout_factor', 2))

        self.downloader = downloader or ChunkedDownloader(speed_test.get('liveness_url', DEFAULT_LIVENESS_URL))
        self.latency_probe = latency_probe or LatencyProbe.from_config(config)
        self.geo_resolver = geo_resolver or GeoResolver.from_config(config)

        log.debug(f"NodeTester初始化: 下載量={self.download_size}B, 超時={self.timeout}s, "
                  f"並發={self.concurrent}, 快速模式={self.fast_mode}, geo token={len(self.tokens)}個")

    async def test_single_node(self, proxy: Proxy, index: int = 0) -> Result:
        """
        單個代理的完整測試：分塊測速 -> 延遲探測 -> 出口地理位置
        測速或地理位置失敗都不會拋出異常，總是返回一條 Result
        """
        log.debug(f"Testing [{index + 1: >3}] {proxy.name}")

        if self.fast_mode:
            result = Result(name=proxy.name)
        else:
            result = await self.downloader.run_concurrent_transfer(
                proxy, self.download_size, self.timeout, self.concurrent
            )

        # 完全無法傳輸數據的代理不再浪費時間做延遲探測
        if self.fast_mode or (self.latency_enabled and result.transfer_ok):
            stats = await self.latency_probe.probe(proxy, self.timeout)
            result = replace(result, latency=stats.latency, jitter=stats.jitter,
                             packet_loss=stats.packet_loss)

        if self._should_locate(result):
            result = await self._locate(proxy, result)

        if result.transfer_ok or result.latency >= 0:
            log.info(f"  ✓ {proxy.name} - 帶寬: {format_bandwidth(result.bandwidth)} | "
                     f"TTFB: {format_milliseconds(result.ttfb)} | 延遲: {format_milliseconds(result.latency)} | "
                     f"{result.country_code} {result.ip}")
        else:
            log.info(f"  ✗ {proxy.name} - 無法傳輸數據")
        return result

    def _should_locate(self, result: Result) -> bool:
        if self.fast_mode:
            return result.latency >= 0
        return qualifies_for_geo(result)

    async def _locate(self, proxy: Proxy, result: Result) -> Result:
        try:
            country_code, ip = await self.geo_resolver.resolve(proxy, self.geo_timeout, self.tokens)
        except GeoResolutionError as e:
            log.debug(f"[{proxy.name}] 地理位置未知: {e}")
            return result
        return replace(result, country_code=country_code or UNKNOWN, ip=ip)
