from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from pymongo.database import Database

from config import Settings
from database import connect, utcnow
from mailer import Mailer


@dataclass
class AppContext:
    """Store handles and collaborators shared by the API components."""

    db: Database
    settings: Settings
    mailer: Any
    clock: Callable[[], datetime] = field(default=utcnow)


def build_context(settings: Optional[Settings] = None) -> AppContext:
    settings = settings or Settings.from_env()
    db = connect(settings.database_url, settings.database_name)
    mailer = Mailer(settings.resend_api_key, settings.email_sender)
    return AppContext(db=db, settings=settings, mailer=mailer)
