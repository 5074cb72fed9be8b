# construction_site/settings.py
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-insecure-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '1') == '1'
ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'apps.projects',
    'apps.stages',
]

# Brak lokalnej bazy - źródłem prawdy jest zdalne API etapów i zadań
DATABASES = {}

LANGUAGE_CODE = 'pl'
TIME_ZONE = os.environ.get('CONSTRUCTION_TIME_ZONE', 'Europe/Warsaw')
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Zdalny serwis etapów/zadań
STAGES_API = {
    'BASE_URL': os.environ.get(
        'STAGES_API_BASE_URL',
        'https://constructionmanagementassitantapi.runasp.net/api/v1',
    ),
    'PAGE_SIZE': int(os.environ.get('STAGES_API_PAGE_SIZE', '50')),
    'TIMEOUT_SECONDS': float(os.environ.get('STAGES_API_TIMEOUT', '15')),
    # Górny limit stron jednej listy
    'MAX_PAGES': int(os.environ.get('STAGES_API_MAX_PAGES', '1000')),
}

# Okno (w dniach) dla listy nadchodzących zadań
UPCOMING_TASKS_WINDOW_DAYS = int(os.environ.get('UPCOMING_TASKS_WINDOW_DAYS', '60'))

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.environ.get('CONSTRUCTION_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
