import os
from celery import Celery
import logging

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('storefront')

# Settings prefixed CELERY_ in config/settings.py
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up apps/*/tasks.py
app.autodiscover_tasks()

@app.task(bind=True)
def debug_task(self):
    logger = logging.getLogger(__name__)
    logger.debug(f'Request: {self.request!r}')
