"""
Settings used by the pytest suite.

SQLite instead of MySQL, an in-memory mail outbox, and fast password hashing.
"""

from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test_db.sqlite3',  # noqa: F405
        'ATOMIC_REQUESTS': False,
        'TEST': {
            'NAME': None,
        },
    }
}

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

STRIPE_SECRET_KEY = 'sk_test_dummy'
STRIPE_WEBHOOK_SECRET = 'whsec_test_dummy'
PAYSTACK_SECRET_KEY = 'sk_test_paystack_dummy'

LOGGING['loggers']['core']['level'] = 'WARNING'  # noqa: F405
