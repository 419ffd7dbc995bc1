"""Production settings for the slot booking service.

This module extends the base settings with production specific
configuration. Ensure that sensitive values are provided via
environment variables and that security settings are appropriate for
production use.
"""

from .base import *  # noqa: F401,F403

# Never run with debug enabled in production
DEBUG = False

SECRET_KEY = get_env('DJANGO_SECRET_KEY', required=True)  # noqa: F405

# Allowed hosts should be defined explicitly via environment variable
ALLOWED_HOSTS = get_env('DJANGO_ALLOWED_HOSTS', required=True).split(',')  # noqa: F405

# Serializable commits and lock timeouts need PostgreSQL
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': get_env('POSTGRES_DB', required=True),  # noqa: F405
        'USER': get_env('POSTGRES_USER', required=True),  # noqa: F405
        'PASSWORD': get_env('POSTGRES_PASSWORD', required=True),  # noqa: F405
        'HOST': get_env('DB_HOST', 'localhost'),  # noqa: F405
        'PORT': get_env('DB_PORT', '5432'),  # noqa: F405
        'CONN_MAX_AGE': int(get_env('DB_CONN_MAX_AGE', '60')),  # noqa: F405
    }
}

# Configure secure proxies and cookies
CSRF_COOKIE_SECURE = True
SESSION_COOKIE_SECURE = True
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
SECURE_SSL_REDIRECT = get_bool_env('SECURE_SSL_REDIRECT', 'true')  # noqa: F405
