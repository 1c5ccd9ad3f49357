"""
Settings for running the lti_auth tests
"""

SECRET_KEY = 'insecure-secret-key-for-tests'

INSTALLED_APPS = (
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'lti_auth',
)

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    },
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'lti-auth-tests',
    },
}

USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.AutoField"

ALLOWED_HOSTS = ['testserver', 'tool.example.com', 'platform.example.com']

LTI_AUTH = {
    'JWT_CLIENT': 'lti_auth.lti_1p3.pyjwt_client.PyJwtClient',
    'LEEWAY': 180,
    'STRICT_MODE': False,
}
