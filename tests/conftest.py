import asyncio
import json
import socket
from typing import List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.models import Proxy, ProxyType


class LoopbackProxy(Proxy):
    """Routes every tunnel to a local port regardless of the requested host."""

    def __init__(self, name: str, port: int = 0, fail: bool = False,
                 proxy_type: ProxyType = ProxyType.SOCKS5, config: Optional[dict] = None):
        self._name = name
        self._type = proxy_type
        self.port = port
        self.fail = fail
        self.calls: List[tuple] = []
        self._config = config

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> ProxyType:
        return self._type

    @property
    def config(self):
        return self._config

    async def open_tunnel(self, host: str, port: int) -> socket.socket:
        self.calls.append((host, port))
        if self.fail:
            raise ConnectionRefusedError(f"tunnel to {host}:{port} refused")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        try:
            await asyncio.get_running_loop().sock_connect(sock, ('127.0.0.1', self.port))
        except OSError:
            sock.close()
            raise
        return sock


class Hits:
    def __init__(self):
        self.paths: List[str] = []
        self.user_agents: List[str] = []


GEO_PAYLOADS = {
    'good': {'ip': '1.2.3.4', 'country': 'JP'},
    'coded': {'ip': '1.2.3.5', 'country_code': 'US', 'country': 'United States'},
    'nocountry': {'ip': '1.2.3.6'},
    'noip': {'country': 'US'},
}


def build_app(hits: Hits) -> web.Application:
    async def download(request: web.Request):
        size = int(request.query.get('bytes', '0'))
        return web.Response(body=b'x' * size)

    async def error(request: web.Request):
        return web.Response(status=500)

    async def empty(request: web.Request):
        return web.Response(body=b'')

    async def slow(request: web.Request):
        response = web.StreamResponse()
        await response.prepare(request)
        await response.write(b'x' * 1000)
        await asyncio.sleep(1)
        await response.write(b'x' * 1000)
        await response.write_eof()
        return response

    async def status(request: web.Request):
        size = int(request.query.get('bytes', '0'))
        return web.Response(status=int(request.match_info['code']), body=b'x' * size)

    async def generate_204(request: web.Request):
        return web.Response(status=204)

    async def geo_token(request: web.Request):
        hits.paths.append(request.path_qs)
        hits.user_agents.append(request.headers.get('User-Agent', ''))
        token = request.query.get('token', '')
        if token == 'garbage':
            return web.Response(text='<html>rate limited</html>')
        if token in GEO_PAYLOADS:
            return web.Response(text=json.dumps(GEO_PAYLOADS[token]), content_type='application/json')
        return web.Response(status=403)

    async def geo_fallback(request: web.Request):
        hits.paths.append(request.path_qs)
        hits.user_agents.append(request.headers.get('User-Agent', ''))
        return web.json_response({'ip': '5.6.7.8', 'country_code': 'DE'})

    async def geo_down(request: web.Request):
        hits.paths.append(request.path_qs)
        return web.Response(status=502)

    app = web.Application()
    app.router.add_get('/__down', download)
    app.router.add_get('/error', error)
    app.router.add_get('/empty', empty)
    app.router.add_get('/slow', slow)
    app.router.add_get('/status/{code}', status)
    app.router.add_get('/generate_204', generate_204)
    app.router.add_get('/json', geo_token)
    app.router.add_get('/geoip', geo_fallback)
    app.router.add_get('/geoip-down', geo_down)
    return app


@pytest.fixture
def hits() -> Hits:
    return Hits()


@pytest_asyncio.fixture
async def server(hits):
    test_server = TestServer(build_app(hits))
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest.fixture
def proxy(server) -> LoopbackProxy:
    return LoopbackProxy("🇯🇵 Tokyo 01", port=server.port)


@pytest.fixture
def dead_proxy() -> LoopbackProxy:
    return LoopbackProxy("dead", fail=True)
