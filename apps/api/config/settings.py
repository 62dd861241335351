"""
Django settings for the MedTracker dose scheduling service.
"""

import os
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Application version
VERSION = os.environ.get('APP_VERSION', '1.0.0')
COMMIT_HASH = os.environ.get('COMMIT_HASH', None)

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DJANGO_DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third-party apps
    'rest_framework',

    # Local apps
    'apps.medications',  # medication, schedule
    'apps.doses',        # dose_record
    'apps.transitions',  # transition_event, schedule_adjustment
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'apps.core.observability.correlation.RequestCorrelationMiddleware',  # Request correlation
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

# Database
# The tracker embeds into a host application; SQLite is the default store.
DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DATABASE_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DATABASE_NAME', str(BASE_DIR / 'medtracker.sqlite3')),
        'USER': os.environ.get('DATABASE_USER', ''),
        'PASSWORD': os.environ.get('DATABASE_PASSWORD', ''),
        'HOST': os.environ.get('DATABASE_HOST', ''),
        'PORT': os.environ.get('DATABASE_PORT', ''),
    }
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ==============================================================================
# REST FRAMEWORK
# ==============================================================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_FILTER_BACKENDS': [
        'rest_framework.filters.SearchFilter',
        'rest_framework.filters.OrderingFilter',
    ],
}

# ==============================================================================
# MEDTRACKER (scheduling engine)
# ==============================================================================
MEDTRACKER = {
    # TransitionEvents older than this are rejected and purged
    'TRANSITION_RETENTION_DAYS': int(os.environ.get('MEDTRACKER_TRANSITION_RETENTION_DAYS', 730)),
    # Number of daily steps for the gradual-shift strategy
    'GRADUAL_SHIFT_STEPS': int(os.environ.get('MEDTRACKER_GRADUAL_SHIFT_STEPS', 3)),
    'DOSE_ASSOCIATION_WINDOW_HOURS': int(os.environ.get('MEDTRACKER_DOSE_ASSOCIATION_WINDOW_HOURS', 24)),
    'ACTUAL_TIME_FUTURE_TOLERANCE_MINUTES': 60,
    'ACTUAL_TIME_MAX_EARLY_DAYS': 7,
    'SCHEDULED_TIME_HORIZON_DAYS': 730,
    'DOSE_HISTORY_RETENTION_DAYS': int(os.environ.get('MEDTRACKER_DOSE_HISTORY_RETENTION_DAYS', 365)),
    'REMINDER_DAYS_AHEAD': int(os.environ.get('MEDTRACKER_REMINDER_DAYS_AHEAD', 7)),
    'DEFAULT_ZONE': os.environ.get('MEDTRACKER_DEFAULT_ZONE', 'UTC'),
    'REMINDER_SCHEDULER': os.environ.get(
        'MEDTRACKER_REMINDER_SCHEDULER',
        'apps.core.reminders.LoggingReminderScheduler'
    ),
}

# ==============================================================================
# CELERY
# ==============================================================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://redis:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://redis:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', 'False') == 'True'

CELERY_BEAT_SCHEDULE = {
    'generate-daily-doses': {
        'task': 'apps.doses.tasks.generate_daily_doses',
        'schedule': 60 * 60,  # hourly; generation is idempotent
    },
    'apply-gradual-shift-steps': {
        'task': 'apps.transitions.tasks.apply_due_gradual_steps',
        'schedule': 60 * 60,
    },
    'refresh-reminders': {
        'task': 'apps.medications.tasks.refresh_reminders',
        'schedule': 24 * 60 * 60,
    },
    'purge-dose-history': {
        'task': 'apps.doses.tasks.purge_dose_history',
        'schedule': 24 * 60 * 60,
    },
    'purge-transition-events': {
        'task': 'apps.transitions.tasks.purge_transition_events',
        'schedule': 24 * 60 * 60,
    },
}

# ==============================================================================
# LOGGING
# ==============================================================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'correlation': {
            '()': 'apps.core.observability.logging.CorrelationFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
        'json': {
            '()': 'apps.core.observability.logging.SanitizedJSONFormatter',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json' if not DEBUG else 'verbose',
            'filters': ['correlation'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'apps': {
            'level': 'DEBUG' if DEBUG else 'INFO',
        },
    },
}
