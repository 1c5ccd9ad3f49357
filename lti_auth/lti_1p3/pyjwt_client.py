"""
JwtClient implementation on PyJWT.

This is the default client. It signs and verifies RS256/384/512 tokens but
cannot handle encrypted tokens; use JwCryptoClient for those.
"""
import json
import logging

import jwt
from edx_django_utils.monitoring import function_trace

from ..exceptions import InvalidRsaKey, InvalidToken, RsaKeyNotSet, SignatureInvalid
from .jwt_client import JwtClient, check_algorithm

log = logging.getLogger(__name__)


def _prepare_key(key, algorithm='RS256'):
    """
    Load a PEM string, a JWK JSON string or a JWK dict as a PyJWT key object.
    """
    algo = jwt.get_algorithm_by_name(algorithm)
    try:
        if isinstance(key, dict):
            return algo.from_jwk(json.dumps(key))
        if isinstance(key, str) and key.strip().startswith('{'):
            return algo.from_jwk(key)
        return algo.prepare_key(key)
    except (jwt.exceptions.InvalidKeyError, ValueError, TypeError) as err:
        log.warning('An error was encountered while loading an RSA key. The RSA key could not be parsed.')
        raise InvalidRsaKey() from err


def _public_key(key_object):
    if hasattr(key_object, 'public_key'):
        return key_object.public_key()
    return key_object


class PyJwtClient(JwtClient):
    """
    JWT client using PyJWT and the cryptography backend.
    """

    def _parse(self, token):
        try:
            headers = jwt.get_unverified_header(token)
            payload = jwt.decode(token, options={'verify_signature': False})
        except jwt.exceptions.DecodeError as err:
            raise InvalidToken() from err
        return headers, payload

    def _verify_with_key(self, key):
        algorithm = self.get_header('alg')
        public_key = _public_key(_prepare_key(key, algorithm))
        try:
            jwt.decode(
                self.token,
                key=public_key,
                algorithms=[algorithm],
                leeway=self.config.leeway,
                options={
                    'verify_signature': True,
                    'verify_aud': False,
                    'verify_exp': False,
                    'verify_iat': False,
                },
            )
        except jwt.exceptions.InvalidTokenError as err:
            raise SignatureInvalid(str(err)) from err

    def _public_jwk(self, key):
        algo = jwt.get_algorithm_by_name('RS256')
        public_key = _public_key(_prepare_key(key))
        return json.loads(algo.to_jwk(public_key))

    @classmethod
    @function_trace('lti_auth.pyjwt_client.PyJwtClient.sign')
    def sign(cls, payload, signature_method, private_key, kid=None, jku=None,
             encryption_method=None, public_key=None):
        check_algorithm(signature_method)
        if encryption_method:
            raise InvalidToken("PyJwtClient does not support encrypted JWTs.")
        if not private_key:
            log.warning(
                'An error was encountered while loading the LTI private key. '
                'The RSA key is not set.'
            )
            raise RsaKeyNotSet()

        key = _prepare_key(private_key, signature_method)
        headers = {'typ': 'JWT', 'alg': signature_method}
        if kid:
            headers['kid'] = kid
        if jku:
            headers['jku'] = jku
        token = jwt.encode(payload, key, algorithm=signature_method, headers=headers)
        cls.record_signed(headers, payload)
        return token
