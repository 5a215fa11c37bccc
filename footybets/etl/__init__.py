"""ETL module for fixture data extraction and normalization."""

from footybets.etl.base import DataProvider, Event, Fixture, Team
from footybets.etl.fpl import FPLProvider

__all__ = [
    "DataProvider",
    "Event",
    "Fixture",
    "FPLProvider",
    "Team",
]
