"""Test settings.

File-backed SQLite, local memory cache and eager Celery so the suite runs
without PostgreSQL or Redis. The database lives in a file so threaded
tests share it across connections.
"""

import tempfile
from pathlib import Path

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'TEST': {'NAME': str(Path(tempfile.gettempdir()) / 'slot-booking-test.sqlite3')},
        'OPTIONS': {'timeout': 20},
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'scheduling-test-cache',
    }
}

TIME_ZONE = 'UTC'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

AVAILABILITY_CACHE_ENABLED = True
BOOKING_SLOT_GRANULARITY_MINUTES = 30
BOOKING_HOLD_TTL_SECONDS = 90

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

LOGGING['loggers']['apps']['level'] = 'WARNING'  # noqa: F405
LOGGING['loggers']['shared']['level'] = 'WARNING'  # noqa: F405
