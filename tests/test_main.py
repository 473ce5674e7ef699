import pytest

import main
from core.models import Result
from utils.config_utils import DEFAULT_CONFIG


def test_apply_args_overrides_only_given_flags():
    args = main.build_parser().parse_args(
        ["-c", "config.yaml", "--size", "1000", "--iptokens", "a, b", "--fast", "--sort", "t"]
    )
    config = main.apply_args(DEFAULT_CONFIG, args)

    assert config['speed_test']['download_size'] == 1000
    assert config['speed_test']['fast_mode'] is True
    assert config['speed_test']['timeout'] == DEFAULT_CONFIG['speed_test']['timeout']
    assert config['geo']['tokens'] == ['a', 'b']
    assert config['sort'] == 't'
    assert config['filter'] == '.*'


def test_apply_args_without_flags_keeps_config():
    args = main.build_parser().parse_args(["-c", "config.yaml"])
    assert main.apply_args(DEFAULT_CONFIG, args) == DEFAULT_CONFIG


@pytest.mark.asyncio
async def test_missing_config_flag_exits_1():
    assert await main.main([]) == 1


@pytest.mark.asyncio
async def test_bad_config_exits_1(tmp_path):
    assert await main.main(["-c", str(tmp_path / "nope.yaml")]) == 1


@pytest.mark.asyncio
async def test_no_matching_proxies(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("proxies:\n  - {name: a, url: 'socks5://127.0.0.1:1'}\n", encoding='utf-8')
    assert await main.main(["-c", str(path), "-f", "^zzz$"]) == 1


@pytest.mark.asyncio
async def test_run_writes_csv(tmp_path, monkeypatch):
    async def fake_test(self, proxy, index=0):
        return Result(proxy.name, bandwidth=2048.0, ttfb=10.0, downloaded=2048)

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main.NodeTester, "test_single_node", fake_test)
    config = dict(DEFAULT_CONFIG, output='csv', proxies=[
        {'name': 'b', 'url': 'socks5://127.0.0.1:1'},
        {'name': 'a', 'url': 'http://127.0.0.1:2'},
    ])

    assert await main.run(config) == 0
    rows = (tmp_path / "result.csv").read_text(encoding="utf-8-sig").splitlines()
    assert len(rows) == 3


@pytest.mark.asyncio
async def test_duplicate_name_in_one_source_exits_1(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "proxies:\n"
        "  - {name: a, url: 'socks5://127.0.0.1:1'}\n"
        "  - {name: a, url: 'socks5://127.0.0.1:2'}\n",
        encoding='utf-8',
    )
    assert await main.main(["-c", str(path)]) == 1
