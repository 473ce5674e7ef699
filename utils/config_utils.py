#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
配置工具模块
"""
import asyncio
import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Union

import aiohttp
import yaml

from utils.logger import log

# 命令行和配置文件都未指定时使用的默认值
DEFAULT_CONFIG: Dict[str, Any] = {
    'speed_test': {
        'liveness_url': 'https://speed.cloudflare.com/__down?bytes={size}',
        'download_size': 100 * 1024 * 1024,
        'timeout': 5,
        'concurrent': 4,
        'fast_mode': False,
    },
    'latency_test': {
        'enabled': True,
        'url': 'https://www.gstatic.com/generate_204',
        'count': 4,
        'interval': 0,
    },
    'geo': {
        'tokens': [],
        'token_url': 'http://ipinfo.io/json?token={token}',
        'fallback_url': 'https://api.ip.sb/geoip',
        'timeout_factor': 2,
    },
    'proxies': [],
    'filter': '.*',
    'sort': 'b',
    'output': '',
    'proxy_concurrency': 1,
    'connect_timeout': 10,
}


class ConfigError(Exception):
    """配置无法读取或取值非法，属于致命错误"""


def parse_env_variables(config: Any) -> Any:
    """
    递归解析配置中的环境变量占位符 ${VAR_NAME}
    """
    if isinstance(config, dict):
        for key, value in config.items():
            config[key] = parse_env_variables(value)
    elif isinstance(config, list):
        for i, item in enumerate(config):
            config[i] = parse_env_variables(item)
    elif isinstance(config, str):
        # 正则匹配 ${VAR_NAME}
        match = re.match(r'^\$\{(.*)\}$', config)
        if match:
            var_name = match.group(1)
            return os.getenv(var_name, '')  # 如果环境变量不存在，返回空字符串
    return config


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """深度合并，override 中为 None 的值忽略"""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


# 訂閱服務按 UA 決定返回格式，用 clash.meta 拿到 Clash YAML
SUBSCRIPTION_UA = "clash.meta"


def is_url_source(source: str) -> bool:
    return source.lower().startswith(('http://', 'https://'))


def split_sources(sources: Union[str, Path, None]) -> List[str]:
    """逗號分隔的配置來源，每一項是本地路徑或 http(s) URL"""
    if sources is None:
        return []
    if isinstance(sources, Path):
        return [str(sources)]
    return [s.strip() for s in sources.split(',') if s.strip()]


async def read_source(source: str, timeout: float = 30) -> str:
    """
    讀取單個配置來源的原始文本

    Raises:
        OSError / aiohttp.ClientError / asyncio.TimeoutError: 無法讀取
    """
    if not is_url_source(source):
        with open(source, 'r', encoding='utf-8') as f:
            return f.read()

    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout),
                                     headers={'User-Agent': SUBSCRIPTION_UA}) as session:
        async with session.get(source) as response:
            response.raise_for_status()
            return await response.text()


def parse_source(text: str, source: str) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"配置文件格式錯誤 {source}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"配置文件頂層必須是映射: {source}")
    return parse_env_variables(raw)


def _proxy_key(entry: Any) -> Any:
    if isinstance(entry, dict):
        return entry.get('name') or entry.get('url')
    return None


def combine_sources(raws: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    合併多個來源

    設置項以最先出現的來源為準；proxies 依次拼接，不同來源間的同名代理保留第一個，
    同一來源內的重名留給 load_proxies 報錯
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    for raw in reversed(raws):
        settings = {k: v for k, v in raw.items() if k != 'proxies'}
        config = merge_config(config, settings)

    proxies = []
    seen = set()
    for raw in raws:
        added = set()
        for entry in raw.get('proxies') or []:
            key = _proxy_key(entry)
            if key in seen:
                log.debug(f"跳過其他來源中已存在的代理 {key}")
                continue
            if key is not None:
                added.add(key)
            proxies.append(entry)
        seen |= added
    config['proxies'] = proxies
    return config


async def load_config(sources: Union[str, Path, None], timeout: float = 30) -> Dict[str, Any]:
    """
    載入一個或多個 YAML 配置並與默認值合併

    Args:
        sources: 逗號分隔的本地路徑或 http(s) URL，None 表示只使用默認值
        timeout: 下載遠程配置的超時（秒）

    Returns:
        合併後的配置字典

    Raises:
        ConfigError: 沒有任何可讀取的來源，或某個來源格式錯誤
    """
    if sources is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    raws = []
    for source in split_sources(sources):
        try:
            text = await read_source(source, timeout)
        except (OSError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            # 單個來源不可用不影響其他來源
            log.warning(f"⚠️ 無法讀取配置 {source}: {e}")
            continue
        raws.append(parse_source(text, source))
        log.debug(f"已載入配置: {source}")

    if not raws:
        raise ConfigError(f"沒有可讀取的配置: {sources}")
    return combine_sources(raws)


def parse_token_list(value: Union[str, list, None]) -> list:
    """
    解析 geo token 列表
    逗号分隔的字符串保留空项，空 token 表示不带 token 的请求；
    列表形式里的空项（例如未设置的 ${IPINFO_TOKEN}）直接丢弃
    """
    if value is None or value == '':
        return []
    if isinstance(value, str):
        return [token.strip() for token in value.split(',')]
    return [str(token) for token in value if token is not None and str(token) != '']
