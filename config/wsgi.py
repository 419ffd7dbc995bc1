"""WSGI entry point of the slot booking service.

Gunicorn and runserver load `application` from here; set
DJANGO_SETTINGS_MODULE to config.settings.prod in production.
"""

import os
from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.dev')

application = get_wsgi_application()
