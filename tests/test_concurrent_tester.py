import asyncio

import pytest

from core.models import ProxyType, Result
from tests.conftest import LoopbackProxy
from utils.concurrent_tester import WorkerPool, filter_proxies
from utils.config_utils import ConfigError
from utils.stats_monitor import StatsMonitor


def make_proxies(*names, proxy_type=ProxyType.SOCKS5):
    return {name: LoopbackProxy(name, proxy_type=proxy_type) for name in names}


def test_filter_sorts_and_matches():
    proxies = make_proxies("香港 02", "日本 01", "香港 01")
    assert filter_proxies("香港", proxies) == ["香港 01", "香港 02"]
    assert filter_proxies("", proxies) == sorted(proxies)


def test_filter_skips_groups():
    proxies = make_proxies("a", "b")
    proxies["auto"] = LoopbackProxy("auto", proxy_type=ProxyType.URL_TEST)
    proxies["DIRECT"] = LoopbackProxy("DIRECT", proxy_type=ProxyType.DIRECT)
    assert filter_proxies(".*", proxies) == ["a", "b"]


def test_filter_bad_regex():
    with pytest.raises(ConfigError):
        filter_proxies("(", make_proxies("a"))


@pytest.mark.asyncio
async def test_results_in_completion_order():
    delays = {"slow": 0.2, "fast": 0.0, "mid": 0.1}
    proxies = [LoopbackProxy(name) for name in delays]

    async def test_func(proxy, index):
        await asyncio.sleep(delays[proxy.name])
        return Result(proxy.name, bandwidth=1.0, downloaded=1)

    seen = []
    pool = WorkerPool(worker_count=3)
    results = await pool.run_tests(proxies, test_func, on_result=seen.append)

    assert [r.name for r in seen] == ["fast", "mid", "slow"]
    assert results == seen


@pytest.mark.asyncio
async def test_single_worker_keeps_input_order():
    proxies = [LoopbackProxy(name) for name in ("c", "a", "b")]

    async def test_func(proxy, index):
        return Result(proxy.name)

    results = await WorkerPool(worker_count=1).run_tests(proxies, test_func)
    assert [r.name for r in results] == ["c", "a", "b"]


@pytest.mark.asyncio
async def test_exception_yields_failed_result():
    proxies = [LoopbackProxy("ok"), LoopbackProxy("boom")]
    stats = StatsMonitor()

    async def test_func(proxy, index):
        if proxy.name == "boom":
            raise RuntimeError("adapter exploded")
        return Result(proxy.name, bandwidth=100.0, downloaded=100)

    results = await WorkerPool(worker_count=2, stats=stats).run_tests(proxies, test_func)

    by_name = {r.name: r for r in results}
    assert by_name["boom"].error == "adapter exploded"
    assert by_name["boom"].bandwidth == -1
    assert by_name["ok"].transfer_ok
    summary = stats.get_stats()
    assert summary['tested_nodes'] == 2
    assert summary['success_nodes'] == 1
    assert summary['failed_nodes'] == 1
    assert summary['total_bytes'] == 100


@pytest.mark.asyncio
async def test_overlap_bounded_by_worker_count():
    running = 0
    peak = 0

    async def test_func(proxy, index):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return Result(proxy.name)

    proxies = [LoopbackProxy(str(i)) for i in range(10)]
    results = await WorkerPool(worker_count=3).run_tests(proxies, test_func)
    assert len(results) == 10
    assert peak == 3


@pytest.mark.asyncio
async def test_empty_input():
    async def test_func(proxy, index):
        raise AssertionError("never called")

    assert await WorkerPool().run_tests([], test_func) == []
