import copy

import pytest

from core.models import UNKNOWN
from testers.geo_resolver import GeoResolutionError, GeoResolver
from testers.node_tester import NodeTester
from utils.config_utils import DEFAULT_CONFIG, merge_config


class SpyGeoResolver(GeoResolver):
    def __init__(self, answer=('JP', '1.2.3.4')):
        super().__init__()
        self.answer = answer
        self.calls = []

    async def resolve(self, proxy, timeout, tokens):
        self.calls.append((proxy.name, timeout, list(tokens)))
        if self.answer is None:
            raise GeoResolutionError("nothing")
        return self.answer


def make_config(**speed_test):
    return merge_config(DEFAULT_CONFIG, {
        'speed_test': dict({
            'liveness_url': 'http://speed.test/__down?bytes={size}',
            'download_size': 40_000,
            'timeout': 5,
            'concurrent': 4,
        }, **speed_test),
        'latency_test': {'url': 'http://probe.test/generate_204', 'count': 2},
        'geo': {'tokens': 'a,b'},
    })


@pytest.mark.asyncio
async def test_failed_transfer_skips_geo(dead_proxy):
    geo = SpyGeoResolver()
    result = await NodeTester(make_config(), geo_resolver=geo).test_single_node(dead_proxy)

    assert geo.calls == []
    assert result.bandwidth == -1
    assert result.ttfb == -1
    assert result.latency == -1
    assert result.country_code == UNKNOWN
    assert result.ip == UNKNOWN
    # 傳輸失敗不再做延遲探測
    assert len(dead_proxy.calls) == 4


@pytest.mark.asyncio
async def test_successful_transfer_locates_once(proxy):
    geo = SpyGeoResolver()
    result = await NodeTester(make_config(), geo_resolver=geo).test_single_node(proxy)

    assert result.transfer_ok
    assert result.downloaded == 40_000
    assert result.latency > 0
    assert result.packet_loss == 0
    assert (result.country_code, result.ip) == ('JP', '1.2.3.4')
    assert geo.calls == [(proxy.name, 10.0, ['a', 'b'])]


@pytest.mark.asyncio
async def test_geo_exhaustion_keeps_markers(proxy):
    result = await NodeTester(make_config(), geo_resolver=SpyGeoResolver(answer=None)).test_single_node(proxy)
    assert result.transfer_ok
    assert (result.country_code, result.ip) == (UNKNOWN, UNKNOWN)


@pytest.mark.asyncio
async def test_empty_country_becomes_unknown(proxy):
    result = await NodeTester(make_config(), geo_resolver=SpyGeoResolver(answer=('', '9.9.9.9'))).test_single_node(proxy)
    assert (result.country_code, result.ip) == (UNKNOWN, '9.9.9.9')


@pytest.mark.asyncio
async def test_latency_disabled(proxy):
    config = make_config()
    config['latency_test']['enabled'] = False
    result = await NodeTester(config, geo_resolver=SpyGeoResolver()).test_single_node(proxy)
    assert result.transfer_ok
    assert result.latency == -1
    assert result.packet_loss == -1


@pytest.mark.asyncio
async def test_fast_mode_skips_transfer(proxy):
    geo = SpyGeoResolver()
    result = await NodeTester(make_config(fast_mode=True), geo_resolver=geo).test_single_node(proxy)

    assert result.bandwidth == -1
    assert result.downloaded == 0
    assert result.latency > 0
    assert len(geo.calls) == 1
    assert all(host == 'probe.test' for host, _ in proxy.calls)


def test_defaults_are_not_mutated():
    before = copy.deepcopy(DEFAULT_CONFIG)
    make_config(fast_mode=True)
    assert DEFAULT_CONFIG == before
