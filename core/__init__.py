# core模块初始化
# 作者: proxybench team

from .models import FAILED, UNKNOWN, Proxy, ProxyType, Result
from .tunnel import TunnelConnector, create_session

__all__ = ['FAILED', 'UNKNOWN', 'Proxy', 'ProxyType', 'Result', 'TunnelConnector', 'create_session']
