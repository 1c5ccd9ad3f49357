"""
JwtClient implementation on jwcrypto, able to produce and read encrypted
(JWE wrapped) tokens.

Select it with ``LTI_AUTH = {'JWT_CLIENT': 'lti_auth.lti_1p3.jwcrypto_client.JwCryptoClient'}``.
"""
import logging

from edx_django_utils.monitoring import function_trace
from jwcrypto import jwe, jwk, jws
from jwcrypto import jwt as jose_jwt
from jwcrypto.common import JWException, json_decode

from ..exceptions import InvalidRsaKey, InvalidToken, RsaKeyNotSet, SignatureInvalid
from .jwt_client import JwtClient, check_algorithm

log = logging.getLogger(__name__)

KEY_ENCRYPTION_ALGORITHM = 'RSA-OAEP-256'


def _import_key(key):
    """
    Load a PEM string, a JWK JSON string or a JWK dict as a jwcrypto key.
    """
    try:
        if isinstance(key, dict):
            return jwk.JWK(**key)
        if isinstance(key, bytes):
            key = key.decode('utf-8')
        if key.strip().startswith('{'):
            return jwk.JWK.from_json(key)
        return jwk.JWK.from_pem(key.encode('utf-8'))
    except (JWException, ValueError, TypeError, AttributeError) as err:
        log.warning('An error was encountered while loading an RSA key. The RSA key could not be parsed.')
        raise InvalidRsaKey() from err


class JwCryptoClient(JwtClient):
    """
    JWT client using jwcrypto, supporting RSA-OAEP-256 encrypted tokens.
    """
    supports_encryption = True

    def _parse(self, token):
        signed = jws.JWS()
        try:
            signed.deserialize(token)
            headers = signed.jose_header
            payload = json_decode(signed.objects['payload'])
        except (JWException, ValueError, KeyError) as err:
            raise InvalidToken() from err
        return headers, payload

    def _decrypt(self, token, private_key):
        if not private_key:
            raise InvalidToken("A private key is required to decrypt the JWT.")
        envelope = jwe.JWE()
        try:
            envelope.deserialize(token, key=_import_key(private_key))
        except (JWException, ValueError) as err:
            raise InvalidToken("The JWT could not be decrypted.") from err
        except InvalidRsaKey as err:
            raise InvalidToken(str(err)) from err
        return envelope.jose_header, envelope.payload.decode('utf-8')

    def _verify_with_key(self, key):
        verifier = jose_jwt.JWT(algs=[self.get_header('alg')], check_claims=False, expected_type='JWS')
        try:
            verifier.deserialize(self.token, key=_import_key(key))
        except (JWException, ValueError) as err:
            raise SignatureInvalid(str(err) or err.__class__.__name__) from err

    def _public_jwk(self, key):
        return _import_key(key).export_public(as_dict=True)

    @classmethod
    @function_trace('lti_auth.jwcrypto_client.JwCryptoClient.sign')
    def sign(cls, payload, signature_method, private_key, kid=None, jku=None,
             encryption_method=None, public_key=None):
        check_algorithm(signature_method)
        if not private_key:
            raise RsaKeyNotSet()

        headers = {'typ': 'JWT', 'alg': signature_method}
        if kid:
            headers['kid'] = kid
        if jku:
            headers['jku'] = jku
        token = jose_jwt.JWT(header=headers, claims=payload)
        token.make_signed_token(_import_key(private_key))
        serialized = token.serialize()

        if encryption_method:
            if not public_key:
                raise RsaKeyNotSet("A public key is required to encrypt the JWT.")
            envelope = jose_jwt.JWT(
                header={'alg': KEY_ENCRYPTION_ALGORITHM, 'enc': encryption_method, 'cty': 'JWT'},
                claims=serialized,
            )
            envelope.make_encrypted_token(_import_key(public_key))
            serialized = envelope.serialize()

        cls.record_signed(headers, payload)
        return serialized

    def get_jwks(self, key, signature_method='RS256', kid=None):
        jwks = super().get_jwks(key, signature_method, kid)
        for public_jwk in jwks['keys']:
            public_jwk.setdefault('kid', _import_key(key).thumbprint())
        return jwks
