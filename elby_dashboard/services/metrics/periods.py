"""
Reporting period boundaries. Weeks start Monday 00:00 UTC; all bounds are
naive UTC datetimes and half-open, [start, end).
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from elby_dashboard.core.sdms_config import utcnow


def week_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    now = now or utcnow()
    start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=7)


def month_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    now = now or utcnow()
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
