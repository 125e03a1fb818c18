"""
Vite asset tags – dev profile
"""

from pathlib import Path
import environ, os

LOG_LEVEL = os.getenv("DJANGO_LOG_LEVEL", "INFO")

BASE_DIR = Path(__file__).resolve().parent.parent
env = environ.Env(
    DEBUG=(bool, False),
)
# loads .env next to the project when running locally
env_file = BASE_DIR / ".env"
if env_file.exists():
    environ.Env.read_env(env_file)

# ────────── Core ──────────
DEBUG = env.bool("DEBUG", default=False)
SECRET_KEY = env("DJANGO_SECRET_KEY", default="dev-insecure")
ALLOWED_HOSTS = ["*"]  # tighten in prod

INSTALLED_APPS = [
    "django.contrib.staticfiles",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.template.context_processors.static",
                "django.template.context_processors.debug",
            ],
            # Manually register project-local template tag libraries
            "libraries": {
                "vite_tags": "templatetags.vite_tags",
            },
        },
    },
]

ROOT_URLCONF = "config.urls"

DATABASES = {}

# ────────── Static & media ──────────
STATIC_URL = "/static/"
STATICFILES_DIRS = [BASE_DIR / "static"]
STATIC_ROOT = env('STATIC_ROOT', default=BASE_DIR / 'staticfiles')


# ────────── Frontend (Vite) ──────────
# Public directory holding the build directory and the "hot" file written by
# the Vite dev server. Everything below is resolved relative to it.
VITE_INDEX_ROOT = Path(env('VITE_INDEX_ROOT', default=str(BASE_DIR / 'static')))
# Source root searched for optional ("@entry") and templated entries.
# Falls back to VITE_INDEX_ROOT; the parent of VITE_INDEX_ROOT is always searched too.
VITE_BASE_ROOT = env('VITE_BASE_ROOT', default=None)
VITE_ASSET_URL = env('VITE_ASSET_URL', default=STATIC_URL)
VITE_BUILD_DIRECTORY = env('VITE_BUILD_DIRECTORY', default='build')
VITE_MANIFEST = env('VITE_MANIFEST', default='manifest.json')
# Defaults to <VITE_INDEX_ROOT>/hot
VITE_HOT_FILE = env('VITE_HOT_FILE', default=None)
_vite_integrity = env('VITE_INTEGRITY', default='integrity')
VITE_INTEGRITY = False if _vite_integrity.strip().lower() in {'', 'false', '0', 'off'} else _vite_integrity
# A fixed CSP nonce, or true/1/on to generate one per request.
_vite_nonce = env('VITE_NONCE', default='')
VITE_NONCE = True if _vite_nonce.strip().lower() in {'true', '1', 'on', 'yes'} else (_vite_nonce or None)
VITE_ENTRIES = env.list('VITE_ENTRIES', default=['src/main.tsx'])
# Mappings, callables or dotted paths to callables taking (entry, url, chunk, manifest).
VITE_SCRIPT_TAG_ATTRIBUTES = []
VITE_STYLE_TAG_ATTRIBUTES = []
VITE_PRELOAD_TAG_ATTRIBUTES = []

# ────────── Logging ──────────
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,

    # ---------------- Handlers ----------------
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
            "stream": "ext://sys.stdout",  # default is stderr; explicit is nice
        },
    },

    # --------------- Formatters ---------------
    "formatters": {
        "verbose": {
            "format": "{asctime} [{levelname}] {name}: {message}",
            "style": "{",
        },
    },

    # --------------- Root logger --------------
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,              # affects everything that propagates up
    },

    # --------------- Other loggers -----------
    "loggers": {
        # Core Django (requests, system checks, etc.)
        "django": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,         # prevent double-logging
        },

        # Manifest loads and skipped entries; set DJANGO_VITE_DEBUG=1 to see them
        "config.vite": {
            "handlers": ["console"],
            "level": "DEBUG" if os.getenv("DJANGO_VITE_DEBUG") else LOG_LEVEL,
            "propagate": False,
        },
    },
}
