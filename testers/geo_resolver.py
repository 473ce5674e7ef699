# testers/geo_resolver.py
import asyncio
import json
import random
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from core.models import GeoEndpoint, Proxy
from core.tunnel import create_session
from utils.logger import log

DEFAULT_TOKEN_URL = "http://ipinfo.io/json?token={token}"
# 兜底方案，不需要 token，永遠最後一個嘗試
DEFAULT_FALLBACK_URL = "https://api.ip.sb/geoip"

# 有些獲取 IP 的 API 會拒絕默認或空的 UA
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/15.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/116.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 15_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/15.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:105.0) Gecko/20100101 Firefox/105.0",
    "Mozilla/5.0 (Linux; Android 13; Pixel 6) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/117.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/117.0.5938.88 Safari/537.36",
    "Mozilla/5.0 (Windows NT 6.1; WOW64; rv:115.0) Gecko/20100101 Firefox/115.0",
    "Mozilla/5.0 (X11; Linux i686; rv:91.0) Gecko/20100101 Firefox/91.0",
    "Mozilla/5.0 (Linux; Android 10; SM-G973U) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/109.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (Windows NT 6.3; ARM; Trident/7.0; Touch; rv:11.0) like Gecko",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36",
]


class GeoResolutionError(Exception):
    """所有地理位置 API 都失敗或返回了無效數據"""


def check_country(data: Any) -> Optional[Tuple[str, str]]:
    """
    從 API 返回的 JSON 中提取 (國家代碼, IP)

    沒有 ip 字段時返回 None；有 ip 沒有國家時國家為空字符串
    """
    if not isinstance(data, dict):
        return None
    ip = data.get('ip')
    if not isinstance(ip, str) or not ip:
        return None

    # 优先 country_code，再 country
    for key in ('country_code', 'country'):
        country = data.get(key)
        if isinstance(country, str) and country:
            return country, ip
    return "", ip


class GeoResolver:
    """通過代理本身查詢出口 IP 和國家代碼，多個 API 依次兜底"""

    def __init__(self, token_url: str = DEFAULT_TOKEN_URL,
                 fallback_url: str = DEFAULT_FALLBACK_URL,
                 rng: Optional[random.Random] = None):
        self.token_endpoint = GeoEndpoint(token_url, requires_token=True)
        self.fallback_endpoint = GeoEndpoint(fallback_url, requires_token=False)
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: Dict[str, Any], rng: Optional[random.Random] = None) -> "GeoResolver":
        geo = config.get('geo', {})
        return cls(
            token_url=geo.get('token_url', DEFAULT_TOKEN_URL),
            fallback_url=geo.get('fallback_url', DEFAULT_FALLBACK_URL),
            rng=rng,
        )

    def candidate_urls(self, tokens: Sequence[str]) -> List[str]:
        urls = [self.token_endpoint.url(token) for token in tokens]
        # 隨機打亂做 API 的負載均衡
        self.rng.shuffle(urls)
        urls.append(self.fallback_endpoint.url())
        return urls

    def random_user_agent(self) -> str:
        return self.rng.choice(USER_AGENTS)

    async def resolve(self, proxy: Proxy, timeout: float, tokens: Sequence[str]) -> Tuple[str, str]:
        """
        依次嘗試每個 API，返回第一個有效結果

        Returns:
            (國家代碼, IP)，國家未知時國家代碼為空字符串

        Raises:
            GeoResolutionError: 所有候選都失敗
        """
        urls = self.candidate_urls(tokens)
        async with create_session(proxy, timeout) as session:
            for url in urls:
                found = await self._query(session, proxy, url)
                if found is not None:
                    log.debug(f"[{proxy.name}] 地理位置 {found} <- {url}")
                    return found

        raise GeoResolutionError(f"{proxy.name}: all {len(urls)} APIs failed or returned invalid data")

    async def _query(self, session: aiohttp.ClientSession, proxy: Proxy, url: str) -> Optional[Tuple[str, str]]:
        headers = {'User-Agent': self.random_user_agent()}
        try:
            async with session.get(url, headers=headers) as response:
                if response.status != 200:
                    log.debug(f"[{proxy.name}] {url} 返回 {response.status}")
                    return None
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            log.debug(f"[{proxy.name}] 請求 {url} 失敗: {type(e).__name__}: {e}")
            return None

        try:
            data = json.loads(body)
        except ValueError as e:
            log.debug(f"[{proxy.name}] {url} JSON 解析失敗: {e}")
            return None

        found = check_country(data)
        if found is None:
            log.debug(f"[{proxy.name}] {url} 數據無效: {str(data)[:100]}")
        return found
