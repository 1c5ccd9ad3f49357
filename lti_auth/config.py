"""
Runtime configuration for LTI authentication.

Values come from the ``LTI_AUTH`` Django setting, for example::

    LTI_AUTH = {
        'JWT_CLIENT': 'lti_auth.lti_1p3.pyjwt_client.PyJwtClient',
        'LEEWAY': 180,
        'STRICT_MODE': False,
    }

The configuration is built once and passed to the authenticator and signer;
request handling code must not modify it.
"""
from datetime import timedelta

from attrs import define, field, validators
from django.conf import settings
from django.utils.module_loading import import_string

DEFAULT_JWT_CLIENT = 'lti_auth.lti_1p3.pyjwt_client.PyJwtClient'

# Column sizes of ConsumedNonce
NONCE_VALUE_MAX_LENGTH = 50
NONCE_OWNER_MAX_LENGTH = 255

SETTING_NAMES = {
    'JWT_CLIENT': 'jwt_client',
    'LEEWAY': 'leeway',
    'STRICT_MODE': 'strict_mode',
    'DISABLE_KEY_AUTOSAVE': 'disable_key_autosave',
    'ALLOW_JKU_HEADER': 'allow_jku_header',
    'JWT_LIFE': 'jwt_life',
    'NONCE_MAX_AGE': 'nonce_max_age',
    'NONCE_MAX_LENGTH': 'nonce_max_length',
    'LOGIN_STATE_TIMEOUT': 'login_state_timeout',
}


def _to_timedelta(value):
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=int(value))


@define(frozen=True)
class LtiAuthConfig:
    """
    Settings shared by the authenticator, the signer and the JWT clients.

    * jwt_client: dotted path of the JwtClient implementation.
    * leeway: seconds of clock skew allowed on exp/nbf/iat claims.
    * strict_mode: default validation mode, can be overridden per call.
    * disable_key_autosave: do not persist keys fetched from a jku after a key rotation.
    * allow_jku_header: trust a jku header in the token when no key source is configured.
    * jwt_life: lifetime in seconds of signed JWTs.
    * nonce_max_age: how long a consumed nonce is remembered.
    * nonce_max_length: stored nonces keep only this many trailing characters, at most
      NONCE_VALUE_MAX_LENGTH.
    * login_state_timeout: seconds an OIDC login stash stays available.
    """
    jwt_client = field(default=DEFAULT_JWT_CLIENT, validator=validators.instance_of(str))
    leeway = field(default=180, converter=int, validator=validators.ge(0))
    strict_mode = field(default=False, converter=bool)
    disable_key_autosave = field(default=False, converter=bool)
    allow_jku_header = field(default=False, converter=bool)
    jwt_life = field(default=60, converter=int, validator=validators.gt(0))
    nonce_max_age = field(default=timedelta(minutes=30), converter=_to_timedelta)
    nonce_max_length = field(
        default=NONCE_VALUE_MAX_LENGTH,
        converter=int,
        validator=[validators.gt(0), validators.le(NONCE_VALUE_MAX_LENGTH)],
    )
    login_state_timeout = field(default=600, converter=int, validator=validators.gt(0))

    @classmethod
    def from_settings(cls):
        """
        Build the configuration from the ``LTI_AUTH`` Django setting.
        """
        overrides = getattr(settings, 'LTI_AUTH', {}) or {}
        kwargs = {
            attribute: overrides[name]
            for name, attribute in SETTING_NAMES.items()
            if name in overrides
        }
        return cls(**kwargs)

    def get_jwt_client_class(self):
        from .lti_1p3 import jwt_client  # pylint: disable=import-outside-toplevel
        if self.jwt_client == DEFAULT_JWT_CLIENT:
            return jwt_client.get_jwt_client()
        return import_string(self.jwt_client)
