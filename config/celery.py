import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("boxstand")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Сверка статусов броней по времени
    "reconcile-booking-statuses": {
        "task": "bookings.reconcile_booking_statuses",
        "schedule": 60.0 * int(os.environ.get("BOOKING_STATUS_SYNC_MINUTES", "5")),
        "options": {"expires": 50},
    },
}

app.conf.timezone = "Europe/Stockholm"
