"""
lti_auth Django application initialization.
"""

from django.apps import AppConfig


class LtiAuthApp(AppConfig):
    """
    Configuration for the lti_auth Django application.
    """

    name = 'lti_auth'
    verbose_name = 'LTI authentication'
    default_auto_field = 'django.db.models.AutoField'
