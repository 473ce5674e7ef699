# output/console.py
import re
from typing import Iterable, List, Optional

from rich.console import Console
from rich.table import Table

from core.models import Result
from utils.config_utils import ConfigError

EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\u2600-\u26FF\U0001F1E0-\U0001F1FF]"
)
SPACE_RE = re.compile(r"\s{2,}")

COLUMNS = ["节点", "带宽", "TTFB", "延迟", "抖动", "丢包", "国家代码", "IP"]


def format_name(name: str) -> str:
    """去掉 emoji 並合併多餘空白"""
    no_emoji = EMOJI_RE.sub("", name)
    return SPACE_RE.sub(" ", no_emoji).strip()


def format_bandwidth(v: float) -> str:
    if v <= 0:
        return "N/A"
    for unit in ("B/s", "KB/s", "MB/s", "GB/s"):
        if v < 1024:
            return f"{v:.2f}{unit}"
        v /= 1024
    return f"{v:.2f}TB/s"


def format_milliseconds(v: float) -> str:
    if v <= 0:
        return "N/A"
    return f"{v:.2f}ms"


def format_percent(v: float) -> str:
    if v < 0:
        return "N/A"
    return f"{v:.1f}%"


def bandwidth_style(v: float) -> Optional[str]:
    if v < 1024 * 1024:
        return "red"
    if v > 1024 * 1024 * 10:
        return "green"
    return None


def sort_results(results: Iterable[Result], field: str) -> List[Result]:
    """
    按字段排序，失敗的結果永遠排在最後

    Args:
        field: b/bandwidth（降序）、t/ttfb 或 l/latency（升序），空字符串不排序
    """
    results = list(results)
    field = (field or "").lower()
    if not field:
        return results
    if field in ("b", "bandwidth"):
        return sorted(results, key=lambda r: r.bandwidth, reverse=True)
    if field in ("t", "ttfb"):
        return sorted(results, key=lambda r: (r.ttfb < 0, r.ttfb))
    if field in ("l", "latency"):
        return sorted(results, key=lambda r: (r.latency < 0, r.latency))
    raise ConfigError(f"Unsupported sort field: {field}")


def result_row(result: Result) -> List[str]:
    return [
        format_name(result.name),
        format_bandwidth(result.bandwidth),
        format_milliseconds(result.ttfb),
        format_milliseconds(result.latency),
        format_milliseconds(result.jitter) if result.latency >= 0 else "N/A",
        format_percent(result.packet_loss),
        result.country_code,
        result.ip,
    ]


class ResultPrinter:
    """結果到達時逐行打印，結束後打印排序後的表格"""

    ROW_FORMAT = "{:<42}\t{:<12}\t{:<10}\t{:<10}\t{:<10}\t{:<6}\t{:<8}\t{:<15}"

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_header(self):
        self.console.print(self.ROW_FORMAT.format(*COLUMNS), style="bold", highlight=False)

    def print_row(self, result: Result):
        self.console.print(self.ROW_FORMAT.format(*result_row(result)),
                           style=bandwidth_style(result.bandwidth), highlight=False, markup=False)

    def print_table(self, results: List[Result], title: str = ""):
        table = Table(title=title or None)
        for column in COLUMNS:
            table.add_column(column, no_wrap=column in ("带宽", "IP"))
        for result in results:
            table.add_row(*result_row(result), style=bandwidth_style(result.bandwidth))
        self.console.print(table)
