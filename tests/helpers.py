"""
Dates and clock helpers shared by the test modules.
"""

import pendulum

TZ = "Europe/Istanbul"

# 2024-11-25 is a Monday
SUNDAY = pendulum.date(2024, 11, 24)
MONDAY = pendulum.date(2024, 11, 25)
TUESDAY = pendulum.date(2024, 11, 26)


def at(day, hour, minute=0, tz=TZ):
    """Aware datetime on ``day`` in the test timezone."""
    return pendulum.datetime(day.year, day.month, day.day, hour, minute, tz=tz)


def frozen_clock(moment):
    return lambda: moment
