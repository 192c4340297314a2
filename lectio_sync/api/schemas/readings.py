"""
Readings API schemas.
"""

from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


class LiturgicalDayResponse(BaseModel):
    id: str
    date: date
    liturgical_season: str
    liturgical_rank: str
    feast_name: Optional[str] = None
    commemoration: Optional[str] = None
    liturgical_color: str
    week_of_season: int
    day_of_week: Optional[str] = None
    is_sunday: bool
    is_holy_day: bool
    cache_timestamp: Optional[str] = None


class LiturgicalReadingResponse(BaseModel):
    id: str
    liturgical_day_id: str
    reading_type: str
    citation: str
    content: str
    preview_text: str = Field(..., description="First characters of content")
    order_sequence: int
    biblical_book_id: Optional[str] = None
    chapter_verse: Optional[str] = None
    audio_url: Optional[str] = None
    cache_timestamp: Optional[str] = None


class DayReadingsResponse(BaseModel):
    """A cached day and its readings in liturgical order."""

    day: LiturgicalDayResponse
    readings: List[LiturgicalReadingResponse] = Field(default_factory=list)
