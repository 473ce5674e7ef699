# testers/aggregator.py
from typing import Iterable

from core.models import FAILED, ChunkResult, Result

# 帶寬需超過此值才查詢地理位置，避免浮點噪聲
GEO_EPSILON = 1e-9


def aggregate(name: str, chunks: Iterable[ChunkResult], elapsed: float, concurrency: int) -> Result:
    """
    把一個代理的所有分塊結果歸約為一條 Result

    帶寬按整個並發過程的牆鐘時間計算，反映的是總吞吐
    TTFB 的分母是配置的並發數而不是成功數，失敗的 worker 會拉低均值
    """
    concurrency = max(concurrency, 1)
    downloaded = 0
    total_ttfb = 0.0
    for chunk in chunks:
        if chunk.bytes_transferred > 0:
            downloaded += chunk.bytes_transferred
            total_ttfb += chunk.ttfb

    if downloaded == 0:
        return Result(name=name, bandwidth=FAILED, ttfb=FAILED, downloaded=0)

    return Result(
        name=name,
        bandwidth=downloaded / max(elapsed, 1e-9),
        ttfb=total_ttfb / concurrency,
        downloaded=downloaded,
    )


def qualifies_for_geo(result: Result) -> bool:
    return result.downloaded > 0 and result.bandwidth > GEO_EPSILON
