"""
Public data structures shared by the authenticator, the signer and the JWT
clients: the Principal credential bundle, the two parties which embed it, the
incoming request and the results handed back to callers.
"""
from urllib.parse import parse_qsl, urlencode, urlparse

from attrs import define, field, validators

from .exceptions import ConstraintViolation
from .message_types import DEEP_LINKING_REQUEST_TYPES, LtiVersion

HMAC_SIGNATURE_METHODS = ('HMAC-SHA1', 'HMAC-SHA256', 'HMAC-SHA512')
JWT_SIGNATURE_METHODS = ('RS256', 'RS384', 'RS512')


@define
class Principal:
    """
    Identity and credentials of one party of an LTI exchange.

    * key: OAuth1 consumer key, or the OIDC client id.
    * secret: OAuth1 shared secret.
    * rsa_key: PEM or JWK (JSON) key. Private when the party signs, public when it is the counterpart.
    * kid: key id published with the key.
    * jku: URL of the JSON Web Key Set of the party, used for key rotation.
    * signature_method: HMAC-SHA1/256/512 selects OAuth1 signing, RS256/384/512 selects JWT signing.
    * encryption_method: JWE content encryption (e.g. A256GCM) for outgoing tokens, if any.
    * required_scopes: service scopes requested when obtaining an access token.
    * record_id: identifier of the stored registration, when there is one.
    """
    key = field(default=None)
    secret = field(default=None, repr=False)
    rsa_key = field(default=None, repr=False)
    kid = field(default=None)
    jku = field(default=None)
    signature_method = field(
        default='HMAC-SHA1',
        validator=validators.in_(HMAC_SIGNATURE_METHODS + JWT_SIGNATURE_METHODS),
    )
    encryption_method = field(default=None)
    required_scopes = field(factory=list)
    record_id = field(default=None)

    @property
    def uses_oauth1(self):
        return self.signature_method.startswith('HMAC')


@define
class Platform:
    """
    The LMS side of an exchange, as seen by the tool (or by itself when signing).

    ``client_id`` and ``deployment_id`` identify the tool registration on the platform.
    """
    principal = field(factory=Principal)
    platform_id = field(default=None)
    client_id = field(default=None)
    deployment_id = field(default=None)
    authentication_url = field(default=None)
    access_token_url = field(default=None)
    authorization_server_id = field(default=None)
    access_token = field(default=None, repr=False)

    @property
    def nonce_owner(self):
        if self.principal.record_id is not None:
            return f'platform:{self.principal.record_id}'
        if self.platform_id:
            return 'platform:' + '|'.join([self.platform_id, self.client_id or '', self.deployment_id or ''])
        return f'platform:{self.principal.key}'

    def resolve_counterpart(self, resolver, iss, aud, deployment_id):
        # A tool signs as iss=client_id, aud=platform_id
        return resolver.from_platform_id(aud, iss, deployment_id)


@define
class Tool:
    """
    The external application side of an exchange.
    """
    principal = field(factory=Principal)
    initiate_login_url = field(default=None)
    redirection_uris = field(factory=list)
    message_url = field(default=None)

    @property
    def nonce_owner(self):
        if self.principal.record_id is not None:
            return f'tool:{self.principal.record_id}'
        return f'tool:{self.principal.key or self.message_url}'

    def resolve_counterpart(self, resolver, iss, aud, deployment_id):
        return resolver.from_platform_id(iss, aud, deployment_id)


@define
class LtiRequest:
    """
    The parts of an HTTP request needed to authenticate an LTI message.

    ``parameters`` holds the merged query string and form parameters, ``body``
    the raw request body when it is available.
    """
    url = field()
    method = field(default='POST')
    parameters = field(factory=dict)
    body = field(default=None)
    headers = field(factory=dict)

    def form_body(self):
        """
        Return the url-encoded form body, rebuilding it from the parameters if needed.
        """
        if self.body is not None:
            return self.body
        query = dict(parse_qsl(urlparse(self.url).query, keep_blank_values=True))
        return urlencode([
            (name, value) for name, value in self.parameters.items()
            if query.get(name) != value
        ])


@define(frozen=True)
class VerificationResult:
    """
    Outcome of a JWT signature check.

    When verification only succeeded with a key fetched from the jku URL, the
    new key and its kid are returned so the caller can persist them.
    """
    verified = field(default=False)
    updated_public_key = field(default=None, repr=False)
    updated_kid = field(default=None)
    reason = field(default=None)

    @property
    def key_updated(self):
        return self.updated_public_key is not None


@define
class AuthenticationResult:
    """
    Outcome of authenticating an incoming message.

    ``message_parameters`` is the normalized flat parameter map. It must not be
    used when ``ok`` is False, even if partially populated.
    """
    ok = field(default=True)
    reason = field(default=None)
    error = field(default=None)
    details = field(factory=list)
    warnings = field(factory=list)
    raw_parameters = field(factory=dict)
    message_parameters = field(factory=dict)
    lti_version = field(default=None)
    message_type = field(default=None)
    counterpart = field(default=None)
    jwt = field(default=None)
    verification = field(default=None)
    access_token = field(default=None)
    strict_mode = field(default=False)
    generate_warnings = field(default=False)

    def fail(self, error):
        """
        Record a hard failure. The first failure's reason is kept.
        """
        self.ok = False
        if self.reason is None:
            self.reason = str(error)
            self.error = error

    def warn(self, message):
        if self.generate_warnings:
            self.warnings.append(message)

    def should(self, condition, message, error_class=ConstraintViolation):
        """
        Check a rule which only fails the message in strict mode.

        In lenient mode a violation is recorded as a warning and processing continues.
        """
        if condition:
            return True
        if self.strict_mode:
            raise error_class(message)
        self.warn(message)
        return False

    @property
    def return_url(self):
        if self.message_type in DEEP_LINKING_REQUEST_TYPES:
            return self.message_parameters.get('content_item_return_url')
        return self.message_parameters.get('launch_presentation_return_url')

    def get_roles(self, lti_version=None):
        from .roles import parse_roles  # pylint: disable=import-outside-toplevel
        lti_version = lti_version or self.lti_version or LtiVersion.V1
        return parse_roles(self.message_parameters.get('roles', ''), lti_version)


@define
class SignedMessage:
    """
    An outgoing message: the target URL plus either form parameters or a header block.
    """
    url = field(default=None)
    parameters = field(factory=dict)
    header = field(default=None)
    ok = field(default=True)
    reason = field(default=None)
    error = field(default=None)
    method = field(default='POST')

    def fail(self, error):
        self.ok = False
        self.reason = str(error)
        self.error = error
