from django.apps import AppConfig

class StagesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.stages'  # Ważne: pełna ścieżka z 'apps.'
    label = 'stages'      # Krótka nazwa, pod którą Django widzi aplikację
