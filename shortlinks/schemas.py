from pydantic import BaseModel
from typing import List, Optional

class LinkCreate(BaseModel):
    # Checked by services.links.create_link so malformed input is a 400, not a 422
    url: str
    custom_code: Optional[str] = None
    expires_at: Optional[str] = None

class LinkResponse(BaseModel):
    code: str
    short_url: str
    target_url: str
    created_at: str
    expires_at: Optional[str] = None

class DayStats(BaseModel):
    day: str
    clicks: int
    unique_visitors: int

class CountryStats(BaseModel):
    country: str
    clicks: int

class RecentClick(BaseModel):
    at: str
    ip: Optional[str] = None
    country: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None

class LinkStats(BaseModel):
    code: str
    target_url: str
    total_clicks: int
    unique_visitors: int
    clicks_by_day: List[DayStats]
    top_countries: List[CountryStats]
    recent_clicks: List[RecentClick]

class LinkSummary(BaseModel):
    code: str
    target_url: str
    created_at: str
    expires_at: Optional[str] = None
    expired: bool
    total_clicks: int
    unique_visitors: int
