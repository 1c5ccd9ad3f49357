"""
JSON Web Token capability contract.

A JwtClient loads one token, exposes its headers and claims, and verifies
its signature, following key rotations published through a JWKS URL. Signing
and key helpers are class level operations. Implementations differ in the
library they rely on; the one used by default is selected process wide with
``set_jwt_client`` or the ``JWT_CLIENT`` setting.
"""
import json
import logging
import time
from abc import ABC, abstractmethod

from Cryptodome.PublicKey import RSA
from django.utils.module_loading import import_string
from edx_django_utils.monitoring import function_trace

from ..config import DEFAULT_JWT_CLIENT, LtiAuthConfig
from ..data import JWT_SIGNATURE_METHODS, VerificationResult
from ..exceptions import (
    ClaimValidationFailure,
    InvalidRsaKey,
    InvalidToken,
    LtiAuthError,
    NoVerificationMaterial,
    SignatureInvalid,
    UnsupportedAlgorithm,
)
from ..utils import fetch_jwks

log = logging.getLogger(__name__)

KEY_SIZES = {
    'RS512': 4096,
    'RS384': 3072,
}
DEFAULT_KEY_SIZE = 2048

_jwt_client_class = None


def set_jwt_client(client_class):
    """
    Select the JwtClient implementation used by default in this process.
    """
    global _jwt_client_class  # pylint: disable=global-statement
    _jwt_client_class = client_class


def get_jwt_client():
    if _jwt_client_class is None:
        return import_string(DEFAULT_JWT_CLIENT)
    return _jwt_client_class


def check_algorithm(signature_method):
    if signature_method not in JWT_SIGNATURE_METHODS:
        raise UnsupportedAlgorithm(f"Unsupported JWT signature algorithm: {signature_method}")


class JwtClient(ABC):
    """
    Base class of JWT implementations.

    Subclasses provide parsing, decryption, verification with a single key and
    signing. The key rotation logic of ``verify`` is shared.
    """
    supports_encryption = False

    # Headers and payload of the last token signed, for diagnostics
    last_headers = None
    last_payload = None

    def __init__(self, config=None):
        self.config = config or LtiAuthConfig.from_settings()
        self.token = None
        self.headers = None
        self.payload = None
        self.encryption_headers = None

    @abstractmethod
    def _parse(self, token):
        """
        Return the (headers, payload) of a signed token without verifying it.

        Raises InvalidToken.
        """

    def _decrypt(self, token, private_key):
        """
        Return the (envelope headers, signed token) of an encrypted token.
        """
        raise InvalidToken(f"{self.__class__.__name__} does not support encrypted JWTs.")

    @abstractmethod
    def _verify_with_key(self, key):
        """
        Verify the signature of the loaded token with one key (PEM, JWK JSON
        or JWK dict). The exp claim is checked by ``verify``.

        Raises SignatureInvalid.
        """

    @abstractmethod
    def _public_jwk(self, key):
        """
        Return the public JWK, as a dict, of a PEM or JWK key.
        """

    def load(self, token, private_key=None):
        """
        Parse a signed (three segments) or encrypted (five segments) token.

        Returns False if the token is not structurally valid.
        """
        self.token = self.headers = self.payload = self.encryption_headers = None
        if not isinstance(token, str):
            return False
        segments = token.split('.')
        try:
            if len(segments) == 5:
                self.encryption_headers, token = self._decrypt(token, private_key)
                segments = token.split('.')
            if len(segments) != 3:
                return False
            headers, payload = self._parse(token)
        except InvalidToken as err:
            log.warning("[LTI] Unable to load JWT: %s", err)
            return False
        if not isinstance(headers, dict) or not isinstance(payload, dict):
            return False
        self.token, self.headers, self.payload = token, headers, payload
        return True

    def has_jwt(self):
        return self.token is not None

    def is_encrypted(self):
        return self.encryption_headers is not None

    def has_header(self, name):
        return self.has_jwt() and name in self.headers

    def get_header(self, name, default=None):
        if self.has_header(name):
            return self.headers[name]
        return default

    def get_headers(self):
        return dict(self.headers) if self.has_jwt() else {}

    def has_claim(self, name):
        return self.has_jwt() and name in self.payload

    def get_claim(self, name, default=None):
        if self.has_claim(name):
            return self.payload[name]
        return default

    def get_payload(self):
        return dict(self.payload) if self.has_jwt() else {}

    @staticmethod
    def _key_id(key):
        if isinstance(key, dict):
            return key.get('kid')
        if isinstance(key, str) and key.strip().startswith('{'):
            try:
                return json.loads(key).get('kid')
            except ValueError:
                return None
        return None

    def _same_key(self, first, second):
        try:
            first, second = self._public_jwk(first), self._public_jwk(second)
        except InvalidRsaKey:
            return False
        return (first.get('n'), first.get('e')) == (second.get('n'), second.get('e'))

    def _check_expiry(self):
        expires = self.get_claim('exp')
        if expires is None:
            return
        try:
            expires = int(expires)
        except (TypeError, ValueError) as err:
            raise ClaimValidationFailure("The exp claim must be an integer.") from err
        if expires < time.time() - self.config.leeway:
            raise ClaimValidationFailure("The exp claim shows the token has expired.")

    @staticmethod
    def _fetch_key(jku, kid):
        """
        Fetch the JWK with a key id from a JWKS URL.

        A set with a single key is used as is when the token has no kid.
        """
        jwks = fetch_jwks(jku)
        keys = jwks.get('keys') if isinstance(jwks, dict) else None
        if not isinstance(keys, list) or not all(isinstance(key, dict) for key in keys):
            log.error("[LTI] Invalid JWKS document at %s", jku)
            raise NoVerificationMaterial(f"Invalid JSON Web Key Set at {jku}")
        for key in keys:
            if kid and key.get('kid') == kid:
                return key
        if not kid and len(keys) == 1:
            return keys[0]
        raise SignatureInvalid(f"No key with kid '{kid}' found at {jku}")

    @function_trace('lti_auth.jwt_client.JwtClient.verify')
    def verify(self, public_key=None, jku=None):
        """
        Verify the signature of the loaded token.

        The token is checked with ``public_key`` when there is one, otherwise
        with the key fetched from ``jku``. A cached key whose kid differs from
        the token's is ignored. If the cached key fails and a jku is known, the
        key is fetched once and verification retried; when that succeeds with
        a different key, it is returned in the result for the caller to keep.
        """
        if not self.has_jwt():
            return VerificationResult(reason=str(InvalidToken()))
        try:
            check_algorithm(self.get_header('alg'))
        except UnsupportedAlgorithm as err:
            return VerificationResult(reason=str(err))
        try:
            self._check_expiry()
        except ClaimValidationFailure as err:
            return VerificationResult(reason=str(err))

        kid = self.get_header('kid')
        if not public_key and not jku and self.config.allow_jku_header:
            jku = self.get_header('jku')
        cached_key = public_key
        if public_key and jku and kid and self._key_id(public_key) not in (None, kid):
            log.info("[LTI] Cached key does not match kid %s, fetching keys from %s", kid, jku)
            public_key = None
        if not public_key and not jku:
            return VerificationResult(reason=str(NoVerificationMaterial()))

        key = public_key
        try:
            if key is None:
                key = self._fetch_key(jku, kid)
            self._verify_with_key(key)
        except LtiAuthError as err:
            if public_key is None or not jku:
                log.error("[LTI] JWT signature check failed: %s", err)
                return VerificationResult(reason=f"JWT signature check failed: {err}")
            log.info("[LTI] JWT signature check failed with the cached key, retrying with %s", jku)
            try:
                key = self._fetch_key(jku, kid)
                self._verify_with_key(key)
            except LtiAuthError as retry_err:
                log.error("[LTI] JWT signature check failed: %s", retry_err)
                return VerificationResult(reason=f"JWT signature check failed: {retry_err}")

        if key is not cached_key and cached_key and not self._same_key(key, cached_key):
            return VerificationResult(
                verified=True,
                updated_public_key=json.dumps(key),
                updated_kid=key.get('kid'),
            )
        return VerificationResult(verified=True)

    @staticmethod
    def record_signed(headers, payload):
        JwtClient.last_headers = dict(headers)
        JwtClient.last_payload = dict(payload)

    @classmethod
    @abstractmethod
    def sign(cls, payload, signature_method, private_key, kid=None, jku=None,
             encryption_method=None, public_key=None):
        """
        Sign a payload, and encrypt the result for ``public_key`` when an
        encryption method is given.
        """

    @staticmethod
    def generate_key(signature_method='RS256'):
        """
        Generate a private RSA key in PEM format, sized for the algorithm.
        """
        check_algorithm(signature_method)
        size = KEY_SIZES.get(signature_method, DEFAULT_KEY_SIZE)
        return RSA.generate(size).export_key('PEM').decode('utf-8')

    @staticmethod
    def get_public_key(private_key):
        """
        Return the PEM public key of a PEM private key.
        """
        try:
            return RSA.import_key(private_key).publickey().export_key('PEM').decode('utf-8')
        except (ValueError, IndexError, TypeError) as err:
            raise InvalidRsaKey() from err

    def get_jwks(self, key, signature_method='RS256', kid=None):
        """
        Return the JSON Web Key Set publishing the public part of a key.
        """
        jwks = {'keys': []}
        if key:
            public_jwk = self._public_jwk(key)
            public_jwk.update({'alg': signature_method, 'use': 'sig'})
            if kid:
                public_jwk['kid'] = kid
            jwks['keys'].append(public_jwk)
        return jwks
