"""Project configuration: settings per environment, URL routing, the
WSGI entry point and the Celery application running the hold sweeper.
"""

# Load the Celery app with Django so shared_task binds to it
from .celery import app as celery_app  # noqa: F401
