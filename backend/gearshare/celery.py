import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "gearshare.settings.dev")
app = Celery("gearshare")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
