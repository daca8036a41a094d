from .db import (
    session_scope,
    get_engine,
    create_all,
    dispose_engine,
    reminder_exists,
    insert_reminder_if_absent,
    delete_unsent,
    append_reminder_note,
    mark_reminder_sent,
    mark_reminder_undeliverable,
    list_unsent_reminders,
    get_reminder,
)  # noqa: F401
