import os
from pathlib import Path
from decouple import config, Csv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent

# --- Security / Hosts ---
SECRET_KEY = config('SECRET_KEY', default='django-insecure-consult-workspace-dev-key')
DEBUG = config('DEBUG', default=False, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='127.0.0.1,localhost,testserver', cast=Csv())
CSRF_TRUSTED_ORIGINS = config('CSRF_TRUSTED_ORIGINS', default='', cast=Csv())


LOG_DIR = Path(BASE_DIR) / "logs"
os.makedirs(LOG_DIR, exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,

    "formatters": {
        "verbose": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        },
    },

    "handlers": {
        "file": {
            "class": "logging.FileHandler",
            "filename": str(LOG_DIR / "django_errors.log"),
            "formatter": "verbose",
        },
        "hms_file": {
            "class": "logging.FileHandler",
            "filename": str(LOG_DIR / "hms_client.log"),
            "formatter": "verbose",
        },
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },

    "loggers": {
        # JWT authentication middleware logger
        "common.middleware": {
            "handlers": ["console", "file"],
            "level": config('AUTH_LOG_LEVEL', default='INFO'),
            "propagate": False,
        },
        # Every call to the HMS backend
        "common.hms_client": {
            "handlers": ["console", "hms_file"],
            "level": config('HMS_CLIENT_LOG_LEVEL', default='INFO'),
            "propagate": False,
        },
        # Workspace engine (documentation, attachments, requisitions, consultation)
        "apps": {
            "handlers": ["console", "file"],
            "level": config('APPS_LOG_LEVEL', default='INFO'),
            "propagate": False,
        },
    },

    "root": {  # catches all logs
        "handlers": ["console", "file"],
        "level": "ERROR",
    },
}

# If behind Nginx TLS termination:
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
USE_X_FORWARDED_HOST = True

# --- Apps ---
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.staticfiles',

    # 3rd-party
    'rest_framework',
    'corsheaders',
    'drf_spectacular',

    'common',

    # Workspace engine
    'apps.documentation',
    'apps.encounters',
    'apps.attachments',
    'apps.requisitions',
    'apps.consultation',
]

# --- Middleware ---
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'common.middleware.JWTAuthenticationMiddleware',  # JWT authentication for API requests
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'consult.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'consult.wsgi.application'

# --- Database ---
# Only sessions live locally; clinical records stay in the HMS backend
DATABASES = {
    'default': dj_database_url.config(
        default=config('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
        conn_max_age=600,
    )
}

# --- Cache ---
# Requisition summaries, preview handles, in-flight guards, requisition drafts
# and staging queues. Multi-process deployments need a shared backend (redis).
CACHES = {
    'default': {
        'BACKEND': config('CACHE_BACKEND', default='django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': config('CACHE_LOCATION', default='consult-workspace'),
    }
}

# --- JWT Settings (must match the issuing auth service) ---
JWT_SECRET_KEY = config('JWT_SECRET_KEY', default='your-jwt-secret-key-change-in-production')
JWT_ALGORITHM = config('JWT_ALGORITHM', default='HS256')
JWT_LEEWAY = config('JWT_LEEWAY', default=30, cast=int)  # Clock skew tolerance in seconds

# --- HMS backend ---
HMS_API_URL = config('HMS_API_URL', default='http://localhost:8000/api')
HMS_API_TIMEOUT = config('HMS_API_TIMEOUT', default=15, cast=int)

# --- Session Settings (workspace state per visit) ---
SESSION_ENGINE = 'django.contrib.sessions.backends.db'
SESSION_COOKIE_AGE = 3600 * 8  # 8 hours, also the lifetime of cached drafts and staged queues

# --- Workspace engine ---
ATTACHMENT_MAX_BYTES = config('ATTACHMENT_MAX_BYTES', default=10 * 1024 * 1024, cast=int)
ATTACHMENT_UPLOAD_WORKERS = config('ATTACHMENT_UPLOAD_WORKERS', default=4, cast=int)
ATTACHMENT_STAGING_ROOT = config('ATTACHMENT_STAGING_ROOT', default=str(BASE_DIR / 'staging'))
PREVIEW_HANDLE_TTL = config('PREVIEW_HANDLE_TTL', default=3600, cast=int)
REQUISITION_SUMMARY_TTL = config('REQUISITION_SUMMARY_TTL', default=300, cast=int)
REQUISITION_ROLLBACK_ON_TOTAL_FAILURE = config(
    'REQUISITION_ROLLBACK_ON_TOTAL_FAILURE', default=False, cast=bool
)
IN_FLIGHT_TTL = config('IN_FLIGHT_TTL', default=60, cast=int)

# --- Follow-up reminders ---
SCHEDULING_API_URL = config('SCHEDULING_API_URL', default='')
SCHEDULING_API_KEY = config('SCHEDULING_API_KEY', default='')
FOLLOWUP_REMINDER_HOUR = config('FOLLOWUP_REMINDER_HOUR', default=10, cast=int)

# --- DRF ---
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'common.drf_auth.JWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'common.drf_auth.IsAuthenticated',
    ],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
        'rest_framework.parsers.MultiPartParser',
        'rest_framework.parsers.FormParser',
    ],
    'EXCEPTION_HANDLER': 'common.exceptions.api_exception_handler',
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

# --- drf-spectacular Settings ---
SPECTACULAR_SETTINGS = {
    'TITLE': 'Consultation Workspace API',
    'DESCRIPTION': 'Clinical templates, responses, attachments and requisitions for one consultation',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'SCHEMA_PATH_PREFIX': '/api/',
    'COMPONENT_SPLIT_REQUEST': True,
}

# --- CORS Settings ---
CORS_ALLOW_ALL_ORIGINS = config('CORS_ALLOW_ALL_ORIGINS', default=False, cast=bool)
CORS_ALLOWED_ORIGINS = config(
    'CORS_ALLOWED_ORIGINS',
    default='http://localhost:3000,http://127.0.0.1:3000',
    cast=Csv()
)
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_HEADERS = [
    'accept',
    'accept-encoding',
    'authorization',
    'content-type',
    'origin',
    'user-agent',
    'x-csrftoken',
    'x-requested-with',
    'x-tenant-id',
]
CORS_ALLOW_METHODS = [
    'DELETE',
    'GET',
    'OPTIONS',
    'PATCH',
    'POST',
    'PUT',
]
CORS_PREFLIGHT_MAX_AGE = 3600

# --- I18N / TZ ---
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Kolkata'
USE_I18N = True
USE_TZ = True

STATIC_URL = '/static/'
STATIC_ROOT = os.path.join(BASE_DIR, 'staticfiles')

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# --- Celery Settings ---
CELERY_BROKER_URL = config('CELERY_BROKER_URL', default='redis://localhost:6379/0')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default='redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 5 * 60
CELERY_RESULT_EXPIRES = 3600
