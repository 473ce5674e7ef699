#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
並發測試器
工作池模式：多個代理可以重疊測試，每個代理內部的並發由 NodeTester 自己控制
"""

import asyncio
import re
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.models import SKIPPED_TYPES, Proxy, Result
from utils.config_utils import ConfigError
from utils.logger import log
from utils.stats_monitor import StatsMonitor

TestFunc = Callable[[Proxy, int], Awaitable[Result]]
ResultCallback = Callable[[Result], None]


def filter_proxies(pattern: str, proxies: Dict[str, Proxy]) -> List[str]:
    """
    按名稱正則過濾，跳過策略組等不能測速的類型

    Returns:
        排序後的代理名稱列表
    """
    try:
        regexp = re.compile(pattern or '.*')
    except re.error as e:
        raise ConfigError(f"無效的過濾正則 {pattern!r}: {e}") from e

    names = []
    for name, proxy in proxies.items():
        if not regexp.search(name):
            continue
        if proxy.type in SKIPPED_TYPES:
            log.debug(f"跳過 {name} ({proxy.type.value})")
            continue
        names.append(name)
    return sorted(names)


class WorkerPool:
    """
    工作池，worker 從隊列取代理，結果由單一收集者按完成順序發出
    """

    def __init__(self, worker_count: int = 1, stats: Optional[StatsMonitor] = None):
        """
        初始化工作池

        Args:
            worker_count: 同時測試的代理數，1 表示逐個測試
            stats: 統計監控器
        """
        self.worker_count = max(worker_count, 1)
        self.stats = stats or StatsMonitor()
        self.task_queue: asyncio.Queue = asyncio.Queue()
        self.result_queue: asyncio.Queue = asyncio.Queue()
        self.workers: List[asyncio.Task] = []
        self.results: List[Result] = []

    async def worker(self, worker_id: int, test_func: TestFunc):
        log.debug(f"Worker {worker_id} 啟動")

        while True:
            task: Optional[Tuple[Proxy, int]] = await self.task_queue.get()
            if task is None:  # 結束信號
                self.task_queue.task_done()
                break

            proxy, index = task

            try:
                result = await test_func(proxy, index)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 單個代理出錯不影響其他代理
                log.error(f"Worker {worker_id} 測試 {proxy.name} 異常: {type(e).__name__}: {e}")
                result = Result(name=proxy.name, error=str(e))

            await self.result_queue.put(result)
            self.task_queue.task_done()

        log.debug(f"Worker {worker_id} 退出")

    async def distribute_tasks(self, proxies: List[Proxy]):
        for index, proxy in enumerate(proxies):
            await self.task_queue.put((proxy, index))

        # 發送結束信號給所有worker
        for _ in self.workers:
            await self.task_queue.put(None)

    async def collect_results(self, on_result: Optional[ResultCallback]):
        while True:
            result = await self.result_queue.get()
            if result is None:  # 結束信號
                break
            self.results.append(result)
            self.stats.add_result(result)
            if on_result is not None:
                on_result(result)

    async def run_tests(self, proxies: List[Proxy], test_func: TestFunc,
                        on_result: Optional[ResultCallback] = None) -> List[Result]:
        """
        運行測試

        Args:
            proxies: 已過濾的代理列表
            test_func: 單個代理的測試函數
            on_result: 每完成一個代理立即回調

        Returns:
            按完成順序排列的結果
        """
        self.stats.start_test(len(proxies))
        if not proxies:
            return []

        actual_worker_count = min(self.worker_count, len(proxies))
        log.debug(f"啟動 {actual_worker_count} 個 worker 測試 {len(proxies)} 個代理")

        self.workers = [
            asyncio.create_task(self.worker(i, test_func))
            for i in range(actual_worker_count)
        ]
        collector = asyncio.create_task(self.collect_results(on_result))

        try:
            await self.distribute_tasks(proxies)
            await asyncio.gather(*self.workers)
        finally:
            for w in self.workers:
                if not w.done():
                    w.cancel()
            await self.result_queue.put(None)
            await collector

        log.info(f"測試完成: {self.stats.get_stats_summary()}")
        return self.results
