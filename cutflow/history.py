"""Append-only audit log of batch transitions."""

from . import db
from .models import BatchHistory


class HistoryLog:
    CREATED = "created"

    def append(self, batch_id, action, user_id=None, notes=None):
        # no commit here: the entry belongs to the caller's transaction
        entry = BatchHistory(batch_id=batch_id, action=action, user_id=user_id, notes=notes)
        db.session.add(entry)
        return entry

    def entries(self, batch_id):
        return (
            BatchHistory.query.filter_by(batch_id=batch_id)
            .order_by(BatchHistory.timestamp.desc(), BatchHistory.id.desc())
            .all()
        )


def transition_action(old_status, new_status):
    return f"status {old_status} -> {new_status}"
