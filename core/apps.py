from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'
    verbose_name = 'Bicycle marketplace core'

    def ready(self):
        # Connect notification receivers
        from . import signals  # noqa: F401
