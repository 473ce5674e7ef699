# testers模块初始化
# 作者: proxybench team

from .chunked_downloader import ChunkedDownloader
from .geo_resolver import GeoResolutionError, GeoResolver
from .latency_probe import LatencyProbe
from .node_tester import NodeTester

__all__ = ['ChunkedDownloader', 'GeoResolutionError', 'GeoResolver', 'LatencyProbe', 'NodeTester']
