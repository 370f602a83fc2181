from __future__ import annotations

from extensions import db
from models import Notification

def notify(recipient_id: int, title: str, message: str, *, type_: str = "info",
           link: str | None = None, source: str | None = None, created_by: int | None = None) -> Notification:
    n = Notification(
        recipient_id=recipient_id, title=title, message=message, type=type_,
        link=link, source=source, created_by=created_by,
    )
    db.session.add(n)
    return n
