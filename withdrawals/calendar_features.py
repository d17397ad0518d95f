"""
Calendar Features Module
========================

Appends calendar-derived columns to a withdrawal table in place.

Functions:
    - dates: day/week/month/quarter parts of `trandate`
    - paydays: payday flag and days elapsed since the last payday
    - holidays: US federal holiday flag
    - social_security: social-security deposit day flag
"""

import logging
from typing import List

import numpy as np
import pandas as pd
from pandas.tseries.holiday import USFederalHolidayCalendar
from pandas.tseries.offsets import CustomBusinessDay

logger = logging.getLogger(__name__)

_HOLIDAYS = USFederalHolidayCalendar()
_BUSINESS_DAY = CustomBusinessDay(calendar=_HOLIDAYS)


def _trandates(df: pd.DataFrame) -> pd.Series:
    return pd.to_datetime(df['trandate'])


def _months(start: pd.Timestamp, end: pd.Timestamp) -> pd.PeriodIndex:
    # include the previous month so the first rows can look back to a payday
    return pd.period_range(start.to_period('M') - 1, end.to_period('M'), freq='M')


def _roll_back(days: List[pd.Timestamp]) -> pd.DatetimeIndex:
    """Move each day back to the closest business day on or before it."""
    return pd.DatetimeIndex(sorted({_BUSINESS_DAY.rollback(day).normalize() for day in days}))


def payday_dates(start, end) -> pd.DatetimeIndex:
    """
    Semi-monthly paydays: the 15th and the last day of every month, each
    rolled back to the previous business day.
    """
    days = []
    for month in _months(pd.Timestamp(start), pd.Timestamp(end)):
        first = month.start_time
        days.append(first + pd.Timedelta(days=14))
        days.append(month.end_time.normalize())
    return _roll_back(days)


def social_security_dates(start, end) -> pd.DatetimeIndex:
    """
    Social-security deposit days: the 3rd of every month (rolled back to
    the previous business day) and the 2nd, 3rd and 4th Wednesdays.
    """
    days = []
    for month in _months(pd.Timestamp(start), pd.Timestamp(end)):
        first = month.start_time
        days.append(_BUSINESS_DAY.rollback(first + pd.Timedelta(days=2)))

        first_wednesday = first + pd.Timedelta(days=(2 - first.dayofweek) % 7)
        for week in (1, 2, 3):
            days.append(first_wednesday + pd.Timedelta(weeks=week))
    return pd.DatetimeIndex(sorted({pd.Timestamp(d).normalize() for d in days}))


def dates(df: pd.DataFrame) -> pd.DataFrame:
    """Append calendar parts of `trandate`."""
    d = _trandates(df)
    df['day_of_week'] = d.dt.dayofweek.to_numpy()
    df['day_of_month'] = d.dt.day.to_numpy()
    df['week_of_year'] = d.dt.isocalendar().week.astype(int).to_numpy()
    df['week_of_month'] = ((d.dt.day - 1) // 7 + 1).to_numpy()
    df['month_of_year'] = d.dt.month.to_numpy()
    df['quarter'] = d.dt.quarter.to_numpy()
    return df


def paydays(df: pd.DataFrame) -> pd.DataFrame:
    """Append `payday` (0/1) and `days_since_payday`."""
    d = _trandates(df)
    pays = payday_dates(d.min(), d.max())

    df['payday'] = d.isin(pays).astype(int).to_numpy()

    last = np.searchsorted(pays.values, d.values, side='right') - 1
    df['days_since_payday'] = (d.values - pays.values[last]).astype('timedelta64[D]').astype(int)
    return df


def holidays(df: pd.DataFrame) -> pd.DataFrame:
    """Append `holiday` (0/1) for US federal holidays."""
    d = _trandates(df)
    observed = _HOLIDAYS.holidays(start=d.min(), end=d.max())
    df['holiday'] = d.isin(observed).astype(int).to_numpy()
    return df


def social_security(df: pd.DataFrame) -> pd.DataFrame:
    """Append `social_security` (0/1) for deposit days."""
    d = _trandates(df)
    deposits = social_security_dates(d.min(), d.max())
    df['social_security'] = d.isin(deposits).astype(int).to_numpy()
    return df
