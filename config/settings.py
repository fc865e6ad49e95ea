# config/settings.py

import os
from pathlib import Path
from datetime import timedelta
from dotenv import load_dotenv

# ──────────────────────────────────────────────────────────────────────────────
# Base & Env (환경별 .env 자동 로딩)
# ──────────────────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# DJANGO_ENV 에 따라 .env.<DJANGO_ENV> → .env 순서로 로드
# 예) dev → .env.dev, prod → .env.prod
DJANGO_ENV = os.getenv("DJANGO_ENV", "dev").strip().lower()
env_file = BASE_DIR / f".env.{DJANGO_ENV}"
if env_file.exists():
    load_dotenv(env_file, override=True)

# 공통 키 보완용(.env). 이미 로드된 값은 유지(override=False)
common_env = BASE_DIR / ".env"
if common_env.exists():
    load_dotenv(common_env, override=False)


def _env_bool(name: str, default: str = "0") -> bool:
    # "1/true/yes/on" 다 허용 (대소문자 무시)
    return str(os.getenv(name, default)).strip().lower() in ("1", "true", "yes", "on")


# ──────────────────────────────────────────────────────────────────────────────
# Core Settings
# ──────────────────────────────────────────────────────────────────────────────
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-secret")
DEBUG = _env_bool("DEBUG", "1")
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost,testserver").split(",")

# ──────────────────────────────────────────────────────────────────────────────
# Applications
# ──────────────────────────────────────────────────────────────────────────────
INSTALLED_APPS = [
    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_celery_beat",

    # 3rd party
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    "django_filters",
    "drf_spectacular",
    "corsheaders",

    # Domain apps
    "domains.accounts",
    "domains.shipments",
]

AUTH_USER_MODEL = "accounts.User"

# ──────────────────────────────────────────────────────────────────────────────
# Middleware
# ──────────────────────────────────────────────────────────────────────────────
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

# ──────────────────────────────────────────────────────────────────────────────
# URL & Templates
# ──────────────────────────────────────────────────────────────────────────────
ROOT_URLCONF = "config.urls"
APPEND_SLASH = True

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# ──────────────────────────────────────────────────────────────────────────────
# Database (PostgreSQL, DB_NAME 미설정 시 로컬 sqlite)
# ──────────────────────────────────────────────────────────────────────────────
if os.getenv("DB_NAME"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME"),
            "USER": os.getenv("DB_USER"),
            "PASSWORD": os.getenv("DB_PASSWORD"),
            "HOST": os.getenv("DB_HOST"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DJANGO_DB_CONN_MAX_AGE", "60")),
            "OPTIONS": {"sslmode": os.getenv("DJANGO_DB_SSLMODE", "prefer")},
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ──────────────────────────────────────────────────────────────────────────────
# Internationalization
# ──────────────────────────────────────────────────────────────────────────────
LANGUAGE_CODE = "it-it"
TIME_ZONE = "Europe/Rome"
USE_I18N = True
USE_TZ = True
LANGUAGES = [("it", "Italiano"), ("en", "English")]

# ──────────────────────────────────────────────────────────────────────────────
# Static Files
# ──────────────────────────────────────────────────────────────────────────────
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

# ──────────────────────────────────────────────────────────────────────────────
# DRF & OpenAPI
# ──────────────────────────────────────────────────────────────────────────────
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
    ],
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Cargo Tracking API",
    "DESCRIPTION": "Container / B/L / AWB / parcel tracking endpoints with JWT (Bearer).",
    "VERSION": "1.0.0",
    "SCHEMA_PATH_PREFIX": r"/api/v1",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
    "SECURITY": [{"BearerAuth": []}],
    "COMPONENTS": {
        "securitySchemes": {
            "BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"},
        }
    },
    "DISABLE_ERRORS_AND_WARNINGS": True,
    "SWAGGER_UI_SETTINGS": {
        "deepLinking": True,
        "displayRequestDuration": True,
        "persistAuthorization": True,
    },
    "SERVERS": [{"url": "/"}],
    "ENUM_NAME_OVERRIDES": {
        "Status": "ShipmentStatusEnum",
        "EventType": "TrackingEventTypeEnum",
    },
}

# ──────────────────────────────────────────────────────────────────────────────
# JWT (SimpleJWT)
# ──────────────────────────────────────────────────────────────────────────────
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=int(os.getenv("ACCESS_MIN", "60"))),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=int(os.getenv("REFRESH_DAYS", "7"))),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

# ──────────────────────────────────────────────────────────────────────────────
# Security, CORS & CSRF
# ──────────────────────────────────────────────────────────────────────────────
COOKIE_SECURE = not DEBUG
SESSION_COOKIE_SECURE = COOKIE_SECURE
CSRF_COOKIE_SECURE = COOKIE_SECURE
SESSION_COOKIE_SAMESITE = "Lax"
CSRF_COOKIE_SAMESITE = "Lax"

CORS_ALLOWED_ORIGINS = [
    o for o in os.getenv(
        "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(",") if o
]
CORS_ALLOW_CREDENTIALS = True

# ──────────────────────────────────────────────────────────────────────────────
# Tracking providers (외부 추적 API 자격 증명)
# ──────────────────────────────────────────────────────────────────────────────
PROVIDER_HTTP_TIMEOUT = float(os.getenv("PROVIDER_HTTP_TIMEOUT", "15"))

DHL_API_KEY = os.getenv("DHL_API_KEY", "")
DHL_API_URL = os.getenv("DHL_API_URL", "https://api-eu.dhl.com/track/shipments")

FEDEX_CLIENT_ID = os.getenv("FEDEX_CLIENT_ID", "")
FEDEX_CLIENT_SECRET = os.getenv("FEDEX_CLIENT_SECRET", "")
FEDEX_API_URL = os.getenv("FEDEX_API_URL", "https://apis.fedex.com")

UPS_CLIENT_ID = os.getenv("UPS_CLIENT_ID", "")
UPS_CLIENT_SECRET = os.getenv("UPS_CLIENT_SECRET", "")
UPS_API_URL = os.getenv("UPS_API_URL", "https://onlinetools.ups.com/api")

SHIPSGO_API_URL = os.getenv("SHIPSGO_API_URL", "https://shipsgo.com/api/v1.2")
SHIPSGO_API_KEY = os.getenv("SHIPSGO_API_KEY", "")
SHIPSGO_V2_API_URL = os.getenv("SHIPSGO_V2_API_URL", "https://api.shipsgo.com/api/v2")
SHIPSGO_V2_TOKEN = os.getenv("SHIPSGO_V2_TOKEN", "")
SHIPSGO_WEBHOOK_SECRET = os.getenv("SHIPSGO_WEBHOOK_SECRET", "")

# ──────────────────────────────────────────────────────────────────────────────
# Tracking engine
# ──────────────────────────────────────────────────────────────────────────────
# 같은 운송장을 이 간격(분) 안에 다시 조회하지 않음 (forceUpdate 제외)
TRACKING_STALENESS_MINUTES = int(os.getenv("TRACKING_STALENESS_MINUTES", "15"))
# 양하(discharge) 후 추정 인도일 오프셋(일)
TRACKING_ESTIMATED_DELIVERY_DAYS = int(os.getenv("TRACKING_ESTIMATED_DELIVERY_DAYS", "3"))
TRACKING_IMPORT_MAX_WORKERS = int(os.getenv("TRACKING_IMPORT_MAX_WORKERS", "4"))
TRACKING_IMPORT_CHUNK_PAUSE = float(os.getenv("TRACKING_IMPORT_CHUNK_PAUSE", "0.1"))
SHIPMENTS_NOTIFY_WEBHOOK = os.getenv("SHIPMENTS_NOTIFY_WEBHOOK")

# ──────────────────────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────────────────────
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "domains": {
            "handlers": ["console"],
            "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# ──────────────────────────────────────────────────────────────────────────────
# Celery Configuration
# ──────────────────────────────────────────────────────────────────────────────
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
_result_env = os.environ.get("CELERY_RESULT_BACKEND")
CELERY_RESULT_BACKEND = _result_env or None
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TIME_LIMIT = 60 * 10
CELERY_TASK_TRACK_STARTED = True
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_TASK_IGNORE_RESULT = True
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", "0")

CELERY_BEAT_SCHEDULE = {
    "poll-open-shipments-every-15min": {
        "task": "domains.shipments.tasks.poll_open_shipments",
        "schedule": 60.0 * TRACKING_STALENESS_MINUTES,
        "args": [],
        "kwargs": {},
    },
}
