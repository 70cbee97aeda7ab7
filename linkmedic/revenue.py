"""
Estimated monthly commission lost to a broken link

    monthly views x CTR x conversion x order value x commission x severity

Monthly views are the lifetime average, decayed for older videos.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from .models import LinkStatus


DEFAULT_VIDEO_AGE_MONTHS = 12


@dataclass(frozen=True)
class RevenueSettings:
    ctr_percent: float = 2.0
    conversion_percent: float = 3.0
    avg_order_value: float = 45.0
    commission_percent: float = 4.0


SEVERITY: Dict[LinkStatus, float] = {
    LinkStatus.OK: 0.0,
    LinkStatus.NOT_FOUND: 1.0,
    LinkStatus.SEARCH_REDIRECT: 1.0,
    LinkStatus.MISSING_TAG: 1.0,
    LinkStatus.OUT_OF_STOCK: 0.5,
    LinkStatus.OUT_OF_STOCK_THIRD_PARTY: 0.3,
    LinkStatus.REDIRECT: 0.3,
    LinkStatus.UNKNOWN: 0.2,
}

_missing = set(LinkStatus) - set(SEVERITY)
if _missing:
    raise RuntimeError(f'No severity for {sorted(s.value for s in _missing)}')


def estimate_monthly_views(lifetime_views: int, video_age_months: Optional[float] = None) -> float:
    """Average monthly views, decayed once a video is past its first few months"""
    age = DEFAULT_VIDEO_AGE_MONTHS if video_age_months is None else video_age_months
    average = lifetime_views / max(age, 1)
    if age < 3:
        return average
    if age <= 12:
        return average * 0.5
    return average * 0.07


def estimate_monthly_loss(view_count: int, status: LinkStatus, settings: Optional[RevenueSettings] = None,
                          video_age_months: Optional[float] = None) -> float:
    """Commission lost per month, in the settings' currency, rounded to cents"""
    if view_count is None or view_count < 0:
        raise ValueError('view_count must be a non-negative number')
    settings = settings or RevenueSettings()
    severity = SEVERITY[status]
    if severity == 0:
        return 0.0

    impact = (
        estimate_monthly_views(view_count, video_age_months)
        * settings.ctr_percent / 100
        * settings.conversion_percent / 100
        * settings.avg_order_value
        * settings.commission_percent / 100
        * severity
    )
    return math.floor(impact * 100 + 0.5) / 100


def total_monthly_loss(links: Iterable[Tuple[int, LinkStatus, Optional[float]]],
                       settings: Optional[RevenueSettings] = None) -> float:
    """Sum over (view_count, status, video_age_months) triples"""
    total = sum(estimate_monthly_loss(views, status, settings, age) for views, status, age in links)
    return math.floor(total * 100 + 0.5) / 100
