from .db import (
    get_session,
    create_all,
    dispose_engine,
    read_appointments,
    get_appointment,
    create_appointment,
    update_appointment,
    delete_appointment,
    fetch_employees,
    get_reminder_rules,
    put_reminder_rules,
    get_calendar_config,
    put_calendar_config,
    insert_scheduled_reminder,
    claim_scheduled_reminder,
    mark_reminder_processed,
    fetch_due_reminders,
    get_scheduled_reminder,
)  # noqa: F401
