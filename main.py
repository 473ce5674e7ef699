#!/usr/bin/env python3
"""
ProxyBench - 代理帶寬 / 延遲 / 出口地理位置測速工具
"""

import argparse
import asyncio
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from core.url_proxy import load_proxies
from output.console import ResultPrinter, sort_results
from output.writer import write_proxies_to_yaml, write_results_to_csv
from testers.node_tester import NodeTester
from utils.concurrent_tester import WorkerPool, filter_proxies
from utils.config_utils import ConfigError, load_config, merge_config, parse_token_list
from utils.logger import get_debug_logger, get_logger, setup_logger

logger = get_logger()

SORT_TITLES = {
    "b": "===结果按照带宽排序===",
    "bandwidth": "===结果按照带宽排序===",
    "t": "===结果按照延迟排序===",
    "ttfb": "===结果按照延迟排序===",
    "l": "===结果按照探测延迟排序===",
    "latency": "===结果按照探测延迟排序===",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ProxyBench - 代理測速工具")
    parser.add_argument("-c", "--config", default=None,
                        help="配置來源，逗號分隔的本地 YAML 路徑或 http(s) 訂閱地址")
    parser.add_argument("-l", "--liveness", default=None,
                        help="測速下載地址，{size} 會被替換為請求字節數")
    parser.add_argument("-f", "--filter", default=None, help="按名稱過濾代理，支持正則")
    parser.add_argument("--size", type=int, default=None, help="每個代理的總下載字節數")
    parser.add_argument("--timeout", type=float, default=None, help="單次請求超時（秒）")
    parser.add_argument("--concurrent", type=int, default=None, help="每個代理的並發下載數")
    parser.add_argument("--proxy-concurrency", type=int, default=None, help="同時測試的代理數")
    parser.add_argument("--sort", default=None, help="排序字段: b(帶寬) / t(TTFB) / l(延遲)")
    parser.add_argument("--output", default=None, choices=["csv", "yaml", ""], help="輸出 result.csv 或 result.yaml")
    parser.add_argument("--iptokens", default=None, help="逗號分隔的 ipinfo.io token 列表")
    parser.add_argument("--fast", action="store_true", default=None, help="快速模式，只測延遲不測帶寬")
    parser.add_argument("--debug", action="store_true", help="啟用debug日誌")
    return parser


def apply_args(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """命令行參數覆蓋配置文件"""
    overrides = {
        'speed_test': {
            'liveness_url': args.liveness,
            'download_size': args.size,
            'timeout': args.timeout,
            'concurrent': args.concurrent,
            'fast_mode': args.fast,
        },
        'geo': {
            'tokens': parse_token_list(args.iptokens) if args.iptokens is not None else None,
        },
        'filter': args.filter,
        'sort': args.sort,
        'output': args.output,
        'proxy_concurrency': args.proxy_concurrency,
    }
    return merge_config(config, overrides)


async def run(config: Dict[str, Any], printer: Optional[ResultPrinter] = None) -> int:
    proxies = load_proxies(config.get('proxies', []), connect_timeout=config.get('connect_timeout', 10))
    names = filter_proxies(config.get('filter', '.*'), proxies)
    if not names:
        logger.error("❌ 沒有可測試的代理")
        return 1

    # 先校驗排序字段，避免測完才報錯
    sort_field = config.get('sort', '')
    sort_results([], sort_field)

    printer = printer or ResultPrinter()
    tester = NodeTester(config)
    pool = WorkerPool(worker_count=int(config.get('proxy_concurrency', 1)))

    printer.print_header()
    results = await pool.run_tests([proxies[name] for name in names], tester.test_single_node,
                                   on_result=printer.print_row)

    if sort_field:
        results = sort_results(results, sort_field)
        printer.print_table(results, title=SORT_TITLES.get(sort_field.lower(), ""))

    debug_logger = get_debug_logger()
    if debug_logger is not None:
        debug_logger.save_debug_info({
            'stats': pool.stats.get_stats(),
            'results': [asdict(r) for r in results],
        }, "run_summary.json")

    output = (config.get('output') or '').lower()
    if output == 'yaml':
        write_proxies_to_yaml("result.yaml", results, proxies)
    elif output == 'csv':
        write_results_to_csv("result.csv", results)
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """主入口函數"""
    args = build_parser().parse_args(argv)
    setup_logger(debug_mode=args.debug)

    if args.config is None:
        logger.error("❌ Please specify the configuration file (-c)")
        return 1

    try:
        config = apply_args(await load_config(args.config), args)
        return await run(config)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        return 1
    except OSError as e:
        logger.error(f"❌ 寫入結果失敗: {e}")
        return 1


def cli():
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("程序被用戶中斷")
        sys.exit(130)


if __name__ == "__main__":
    cli()
