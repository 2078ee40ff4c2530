from .base import *


SECRET_KEY = "test"  # nosec

STATIC_ROOT = base_dir_join("staticfiles")
STATIC_URL = "/static/"

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# Speed up password hashing
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

if DATABASES["default"]["ENGINE"] == "django.db.backends.sqlite3":
    # The concurrent registration tests need a database shared between threads, which
    # SQLite's in-memory test database is not.
    DATABASES["default"]["TEST"] = {"NAME": base_dir_join("test_db.sqlite3")}

ATTENDEE_COUNT_CACHE_BACKEND = "memory"
