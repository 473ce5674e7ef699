#!/usr/bin/env python3
"""
流量统计和进度监控模块
"""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.models import Result
from utils.logger import log


@dataclass
class TestStats:
    """测试统计数据"""
    total_nodes: int = 0
    tested_nodes: int = 0
    success_nodes: int = 0
    failed_nodes: int = 0
    total_bytes: int = 0
    start_time: Optional[datetime] = None

    # 性能统计（bytes/s）
    max_speed: float = 0.0
    min_speed: float = float('inf')


class StatsMonitor:
    """统计监控器，工作池里的多个任务会并发回报结果"""

    def __init__(self):
        self.stats = TestStats()
        self.lock = threading.Lock()
        self.speed_history: List[float] = []
        self.latency_history: List[float] = []

    def start_test(self, total_nodes: int):
        """开始测试"""
        with self.lock:
            self.stats = TestStats(total_nodes=total_nodes, start_time=datetime.now())
            self.speed_history.clear()
            self.latency_history.clear()

        log.info(f"开始测试，总节点数: {total_nodes}")

    def add_result(self, result: Result):
        """记录一个代理的结果"""
        with self.lock:
            self.stats.tested_nodes += 1
            self.stats.total_bytes += result.downloaded

            if not (result.transfer_ok or result.latency >= 0):
                self.stats.failed_nodes += 1
                return

            self.stats.success_nodes += 1
            if result.transfer_ok:
                self.speed_history.append(result.bandwidth)
                self.stats.max_speed = max(self.stats.max_speed, result.bandwidth)
                self.stats.min_speed = min(self.stats.min_speed, result.bandwidth)
            if result.latency >= 0:
                self.latency_history.append(result.latency)

    def get_stats(self) -> Dict[str, Any]:
        """获取统计数据"""
        with self.lock:
            elapsed_time = 0.0
            if self.stats.start_time:
                elapsed_time = (datetime.now() - self.stats.start_time).total_seconds()

            success_rate = 0.0
            if self.stats.tested_nodes > 0:
                success_rate = self.stats.success_nodes / self.stats.tested_nodes * 100

            avg_speed = sum(self.speed_history) / len(self.speed_history) if self.speed_history else 0.0
            avg_latency = sum(self.latency_history) / len(self.latency_history) if self.latency_history else 0.0

            return {
                'total_nodes': self.stats.total_nodes,
                'tested_nodes': self.stats.tested_nodes,
                'success_nodes': self.stats.success_nodes,
                'failed_nodes': self.stats.failed_nodes,
                'success_rate': round(success_rate, 1),
                'elapsed_time': round(elapsed_time, 1),
                'total_bytes': self.stats.total_bytes,
                'total_gb': round(self.stats.total_bytes / (1024 ** 3), 3),
                'avg_speed': avg_speed,
                'max_speed': self.stats.max_speed,
                'min_speed': self.stats.min_speed if self.stats.min_speed != float('inf') else 0.0,
                'avg_latency': round(avg_latency, 1),
            }

    def get_stats_summary(self) -> str:
        """獲取統計摘要"""
        stats = self.get_stats()
        return (f"總流量: {stats['total_gb']:.3f}GB | "
                f"測試節點: {stats['tested_nodes']} | "
                f"成功: {stats['success_nodes']} | "
                f"失敗: {stats['failed_nodes']} | "
                f"成功率: {stats['success_rate']:.1f}% | "
                f"用時: {stats['elapsed_time']:.1f}s")
