from datetime import datetime, timezone
from zoneinfo import ZoneInfo
from wa_checkpoints.core.config import settings

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def brazil_time(moment: datetime | None = None) -> str:
    """Wall-clock time in the configured zone, formatted the way operators read it (dd/mm/yyyy)."""
    moment = moment or utcnow()
    return moment.astimezone(ZoneInfo(settings.TIMEZONE)).strftime("%d/%m/%Y %H:%M:%S")
