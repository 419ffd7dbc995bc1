from django.apps import AppConfig


class BookingsConfig(AppConfig):
    name = 'apps.bookings'
    label = 'bookings'
    default_auto_field = 'django.db.models.BigAutoField'
    verbose_name = 'Bookings'

    def ready(self) -> None:  # pragma: no cover - import side effects
        from . import signals  # noqa: F401
        from .handlers import register_handlers

        register_handlers()
