# output/writer.py

import csv
import logging
from pathlib import Path
from typing import Dict, List, Union

import yaml

from core.models import Proxy, Result

# 获取当前模块的日志记录器
logger = logging.getLogger(__name__)

CSV_HEADER = ["节点", "带宽 (MB/s)", "延迟 (ms)", "探测延迟 (ms)", "抖动 (ms)", "丢包 (%)", "国家代码", "IP"]


def _ms(v: float) -> str:
    return str(int(v)) if v >= 0 else "-1"


def write_results_to_csv(file_path: Union[str, Path], results: List[Result]):
    """
    将测速结果写入 CSV，带 UTF-8 BOM 方便 Excel 直接打开
    Args:
        file_path: 输出路径
        results: 已排序的结果
    """
    # utf-8-sig 会写入 BOM 头
    with open(file_path, 'w', encoding='utf-8-sig', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for result in results:
            writer.writerow([
                result.name,
                f"{result.bandwidth / 1024 / 1024:.2f}" if result.bandwidth >= 0 else "-1",
                _ms(result.ttfb),
                _ms(result.latency),
                _ms(result.jitter),
                f"{result.packet_loss:.1f}" if result.packet_loss >= 0 else "-1",
                result.country_code,
                result.ip,
            ])
    logger.info(f"成功将 {len(results)} 条结果写入 CSV 文件: {file_path}")


def write_proxies_to_yaml(file_path: Union[str, Path], results: List[Result], proxies: Dict[str, Proxy]):
    """
    按结果顺序导出代理的原始定义
    Args:
        file_path: 输出路径
        results: 已排序的结果
        proxies: 名称 -> 代理
    """
    sorted_proxies = []
    for result in results:
        proxy = proxies.get(result.name)
        if proxy is not None and proxy.config is not None:
            sorted_proxies.append(proxy.config)

    with open(file_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(sorted_proxies, f, allow_unicode=True, sort_keys=False)
    logger.info(f"成功将 {len(sorted_proxies)} 个代理写入 YAML 文件: {file_path}")
