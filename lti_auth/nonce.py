"""
Replay protection for OAuth1 ``oauth_nonce`` values, LTI 1.3 ``nonce``/``jti``
claims and OIDC ``state`` values.

A nonce is accepted at most once per owner (the platform or tool it belongs
to) until its record expires. Stores must make ``save`` atomic, so that of
two concurrent requests with the same nonce only one succeeds.
"""
import hashlib
import logging
from abc import ABC, abstractmethod

from django.core.cache import caches
from django.db import IntegrityError, transaction
from django.utils import timezone
from edx_django_utils.cache import get_cache_key

from .config import NONCE_OWNER_MAX_LENGTH, LtiAuthConfig
from .models import ConsumedNonce
from .utils import backend_call

log = logging.getLogger(__name__)


class NonceStore(ABC):
    """
    Backing store for consumed nonces.
    """

    @abstractmethod
    def load(self, owner, value):
        """
        Return True if an unexpired record exists for the owner and value.
        """

    @abstractmethod
    def save(self, owner, value, expires):
        """
        Record the nonce. Return False if an unexpired record already exists.
        """

    @abstractmethod
    def delete(self, owner, value):
        """
        Forget the nonce. Return True if a record was removed.
        """


class DjangoNonceStore(NonceStore):
    """
    Nonce store on the ConsumedNonce model, made atomic by its unique constraint.
    """

    def load(self, owner, value):
        return ConsumedNonce.objects.filter(owner=owner, value=value, expires__gt=timezone.now()).exists()

    def save(self, owner, value, expires):
        try:
            with transaction.atomic():
                ConsumedNonce.objects.create(owner=owner, value=value, expires=expires)
            return True
        except IntegrityError:
            # The row exists; it may only be reused once it has expired.
            reclaimed = ConsumedNonce.objects.filter(
                owner=owner,
                value=value,
                expires__lte=timezone.now(),
            ).update(expires=expires)
            return reclaimed == 1

    def delete(self, owner, value):
        deleted, __ = ConsumedNonce.objects.filter(owner=owner, value=value).delete()
        return deleted > 0

    def purge_expired(self):
        deleted, __ = ConsumedNonce.objects.filter(expires__lte=timezone.now()).delete()
        return deleted


class CacheNonceStore(NonceStore):
    """
    Nonce store on a Django cache, made atomic by ``cache.add``.

    Only suitable with a cache backend shared by all processes, such as
    memcached or redis.
    """

    def __init__(self, cache_alias='default'):
        self.cache = caches[cache_alias]

    @staticmethod
    def _cache_key(owner, value):
        return get_cache_key(app='lti_auth', key_type='nonce', owner=owner, value=value)

    def load(self, owner, value):
        return self.cache.get(self._cache_key(owner, value)) is not None

    def save(self, owner, value, expires):
        timeout = max(1, int((expires - timezone.now()).total_seconds()))
        return self.cache.add(self._cache_key(owner, value), expires.isoformat(), timeout)

    def delete(self, owner, value):
        return bool(self.cache.delete(self._cache_key(owner, value)))


def bound_owner(owner):
    """
    Fit an owner key into the ConsumedNonce owner column.

    Longer keys keep a readable prefix followed by the SHA-256 digest of the whole key.
    """
    if len(owner) <= NONCE_OWNER_MAX_LENGTH:
        return owner
    digest = hashlib.sha256(owner.encode('utf-8')).hexdigest()
    return owner[:NONCE_OWNER_MAX_LENGTH - len(digest) - 1] + '#' + digest


class PlatformNonce:
    """
    A nonce value belonging to a platform or tool.

    The value is truncated to its trailing characters and the owner is bounded
    to fit the store. The nonce expires after the configured maximum age.
    """

    def __init__(self, owner, value, store, config=None):
        config = config or LtiAuthConfig.from_settings()
        self.owner = bound_owner(owner if isinstance(owner, str) else owner.nonce_owner)
        self.value = str(value)[-config.nonce_max_length:]
        self.expires = timezone.now() + config.nonce_max_age
        self.store = store

    def load(self):
        with backend_call("Nonce store"):
            return self.store.load(self.owner, self.value)

    def save(self):
        with backend_call("Nonce store"):
            return self.store.save(self.owner, self.value, self.expires)

    def delete(self):
        with backend_call("Nonce store"):
            return self.store.delete(self.owner, self.value)

    def consume(self):
        """
        Accept the nonce if it has not been seen before.

        Returns False on replay, including when a concurrent request saved the
        same nonce between the load and the save.
        """
        if self.load() or not self.save():
            log.warning("[LTI] Nonce %s has already been used by %s", self.value, self.owner)
            return False
        return True
