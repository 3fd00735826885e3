"""Leaderboard scopes, periods and their UTC windows."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

SCOPE_GLOBAL = 'global'
SCOPE_COUNTRY = 'country'
SCOPE_ARTIST_GLOBAL = 'artist_global'
SCOPE_ARTIST_COUNTRY = 'artist_country'
SCOPES = (SCOPE_GLOBAL, SCOPE_COUNTRY, SCOPE_ARTIST_GLOBAL, SCOPE_ARTIST_COUNTRY)

PERIOD_DAILY = 'daily'
PERIOD_WEEKLY = 'weekly'
PERIOD_MONTHLY = 'monthly'
PERIOD_ALL_TIME = 'all_time'
PERIODS = (PERIOD_DAILY, PERIOD_WEEKLY, PERIOD_MONTHLY, PERIOD_ALL_TIME)


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def window_for(period: str, ts: float) -> Tuple[float, Optional[float]]:
    """[start, end) of the ``period`` window containing ``ts``. all_time never ends."""
    if period == PERIOD_ALL_TIME:
        return 0.0, None
    moment = _utc(ts)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == PERIOD_DAILY:
        start, end = day, day + timedelta(days=1)
    elif period == PERIOD_WEEKLY:
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    elif period == PERIOD_MONTHLY:
        start = day.replace(day=1)
        end = start.replace(year=start.year + 1, month=1) if start.month == 12 else start.replace(month=start.month + 1)
    else:
        raise ValueError(f'unknown leaderboard period: {period!r}')
    return start.timestamp(), end.timestamp()


def scope_key(scope: str, country: Optional[str] = None, artist_id: Optional[str] = None) -> Optional[str]:
    """Key identifying one population inside a scope; None if required parts are missing."""
    country = (country or '').upper() or None
    if scope == SCOPE_GLOBAL:
        return ''
    if scope == SCOPE_COUNTRY:
        return country
    if scope == SCOPE_ARTIST_GLOBAL:
        return str(artist_id) if artist_id else None
    if scope == SCOPE_ARTIST_COUNTRY:
        return f'{artist_id}:{country}' if artist_id and country else None
    raise ValueError(f'unknown leaderboard scope: {scope!r}')


def split_scope_key(scope: str, key: str) -> Tuple[Optional[str], Optional[str]]:
    """Inverse of ``scope_key``: returns (country, artist_id)."""
    if scope == SCOPE_COUNTRY:
        return key, None
    if scope == SCOPE_ARTIST_GLOBAL:
        return None, key
    if scope == SCOPE_ARTIST_COUNTRY:
        artist_id, _, country = key.rpartition(':')
        return country, artist_id
    return None, None


def period_key(period: str, window_start: float) -> str:
    """Reward key for one period window, shared by every scope."""
    stamp = _utc(window_start).strftime('%Y-%m-%d')
    return f'{period}:{stamp}'
