"""
Storage for consumed nonces.
"""
from django.db import models

from .config import NONCE_OWNER_MAX_LENGTH, NONCE_VALUE_MAX_LENGTH


class ConsumedNonce(models.Model):
    """
    A nonce value which has been accepted for a platform or tool.

    The unique constraint on (owner, value) makes accepting a nonce atomic:
    of two concurrent requests carrying the same nonce only one can insert it.

    .. no_pii:
    """
    owner = models.CharField(max_length=NONCE_OWNER_MAX_LENGTH)
    value = models.CharField(max_length=NONCE_VALUE_MAX_LENGTH)
    expires = models.DateTimeField(db_index=True)

    class Meta:
        app_label = 'lti_auth'
        unique_together = [['owner', 'value']]

    def __str__(self):
        return f"<ConsumedNonce {self.owner} {self.value}>"
