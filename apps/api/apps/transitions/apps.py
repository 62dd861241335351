from django.apps import AppConfig


class TransitionsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.transitions'

    def ready(self):
        import apps.transitions.signals  # noqa
