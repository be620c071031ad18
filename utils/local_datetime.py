# Used to get localized clinic time
from datetime import date, datetime, time

import pytz
from config import CLINIC_TIMEZONE
clinictz = pytz.timezone(CLINIC_TIMEZONE)

def local(dt: datetime):
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.utc)
    return dt.astimezone(clinictz)

def now():
    return datetime.now(clinictz)

def today() -> date:
    return now().date()

def midnight(curr_date: date | None = None):
    if curr_date is None:
        curr_date = today()
    return clinictz.localize(datetime.combine(curr_date, time.min))

def yyyymmdd(curr_date: date | None = None) -> str:
    return (curr_date or today()).strftime("%Y%m%d")
