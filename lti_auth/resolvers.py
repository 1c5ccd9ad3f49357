"""
Lookup of the counterpart platform or tool of a message.

Registrations are stored by the embedding application; the authenticator
only needs to find them by OAuth1 consumer key or by LTI 1.3 issuer, client
id and deployment id, and to hand back keys learnt through key rotation.
"""
import logging
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)


class PrincipalResolver(ABC):
    """
    Finds registrations of platforms (on the tool side) or tools (on the platform side).
    """

    @abstractmethod
    def from_consumer_key(self, consumer_key):
        """
        Return the registration for an OAuth1 consumer key, or None.
        """

    @abstractmethod
    def from_platform_id(self, platform_id, client_id=None, deployment_id=None):
        """
        Return the registration for a platform issuer and optionally a client
        id and deployment id, or None.
        """

    def save_key(self, party, public_key, kid):
        """
        Persist a public key fetched from the party's jku after a key rotation.
        """
        party.principal.rsa_key = public_key
        party.principal.kid = kid


class StaticPrincipalResolver(PrincipalResolver):
    """
    Resolver over a fixed list of Platform or Tool registrations.

    Registrations are matched on ``principal.key`` for OAuth1 and on
    ``platform_id``/``client_id``/``deployment_id`` for LTI 1.3. A Tool
    registration is matched on its ``principal.key`` as the client id.
    """

    def __init__(self, registrations=None):
        self.registrations = list(registrations or [])

    def add(self, registration):
        self.registrations.append(registration)

    def from_consumer_key(self, consumer_key):
        for registration in self.registrations:
            if consumer_key and registration.principal.key == consumer_key:
                return registration
        return None

    def from_platform_id(self, platform_id, client_id=None, deployment_id=None):
        for registration in self.registrations:
            if self._matches(registration, platform_id, client_id, deployment_id):
                return registration
        log.info(
            "[LTI] No registration for platform %s, client %s, deployment %s",
            platform_id, client_id, deployment_id,
        )
        return None

    @staticmethod
    def _matches(registration, platform_id, client_id, deployment_id):
        if hasattr(registration, 'platform_id'):
            if registration.platform_id != platform_id:
                return False
            if client_id is not None and registration.client_id not in (None, client_id):
                return False
            return deployment_id is None or registration.deployment_id in (None, deployment_id)
        # Tool registration: the client id is the tool's key
        return client_id is not None and registration.principal.key == client_id
