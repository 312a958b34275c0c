from datetime import date, datetime
from zoneinfo import ZoneInfo
from larder.config import settings

def today() -> date:
    """Business day in the configured timezone; expiry and dashboard windows key off it."""
    return datetime.now(ZoneInfo(settings.TZ)).date()
