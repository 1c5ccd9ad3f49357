"""
OAuth2 client credentials grant for LTI Advantage services.

A tool obtains an access token by posting a JWT ``client_assertion`` signed
with its own key (RFC 7523). The platform validates the assertion, and issues
a bearer token listing the granted scopes, signed with the platform key.

See https://www.imsglobal.org/spec/security/v1p0/#securing_web_services
"""
import logging
import time

from ..config import LtiAuthConfig
from ..exceptions import (
    ClaimValidationFailure,
    InvalidToken,
    LtiAuthError,
    MalformedRequest,
    ReplayDetected,
    SignatureInvalid,
    UnknownPrincipal,
)
from ..nonce import PlatformNonce
from ..utils import backend_call, check_token_claim, generate_nonce
from .constants import (
    ACCESS_TOKEN_LIFE,
    CLIENT_ASSERTION_TYPE,
    CLIENT_CREDENTIALS_GRANT,
    LTI_1P3_ACCESS_TOKEN_REQUIRED_CLAIMS,
    LTI_1P3_ACCESS_TOKEN_SCOPES,
)

log = logging.getLogger(__name__)

READONLY_SUFFIX = '.readonly'


def _scope_list(scopes):
    if isinstance(scopes, str):
        return [scope for scope in scopes.split(' ') if scope]
    return list(scopes or [])


def has_scope(granted_scopes, scope):
    """
    Return True if the scope was granted.

    A read-only scope is also covered by the scope it restricts.
    """
    granted = _scope_list(granted_scopes)
    if scope in granted:
        return True
    return scope.endswith(READONLY_SUFFIX) and scope[:-len(READONLY_SUFFIX)] in granted


class AccessTokenIssuer:
    """
    Issues and checks access tokens on behalf of a platform.

    * platform: the issuing Platform, whose principal holds the private key.
    * resolver: PrincipalResolver finding the requesting tools.
    * nonce_store: NonceStore used to reject replayed client assertions.
    * token_endpoint: URL of the token endpoint, accepted as assertion audience.
    """

    def __init__(self, platform, resolver, nonce_store, config=None, token_endpoint=None):
        self.platform = platform
        self.resolver = resolver
        self.nonce_store = nonce_store
        self.config = config or LtiAuthConfig.from_settings()
        self.token_endpoint = token_endpoint or platform.access_token_url
        self.supported_scopes = list(LTI_1P3_ACCESS_TOKEN_SCOPES)

    def _jwt_client(self):
        return self.config.get_jwt_client_class()(self.config)

    @property
    def audiences(self):
        return [
            audience for audience in (self.token_endpoint, self.platform.authorization_server_id)
            if audience
        ]

    def verify_client_assertion(self, client_assertion):
        """
        Validate a client assertion and return the Tool it was signed by.

        From https://www.imsglobal.org/spec/security/v1p0/#using-oauth-2-0-client-credentials-grant:

        The authorization server decodes the JWT and MUST validate the values for the
        iss, sub, exp, aud and jti claims.
        """
        client = self._jwt_client()
        if not client.load(client_assertion, self.platform.principal.rsa_key):
            raise InvalidToken()
        payload = client.get_payload()

        for claim in ('iss', 'sub', 'exp', 'jti'):
            check_token_claim(payload, claim)
        if payload['iss'] != payload['sub']:
            raise ClaimValidationFailure("The iss and sub claims of the client assertion must match.")

        audience = payload.get('aud')
        audience = [audience] if isinstance(audience, str) else list(audience or [])
        if not any(item in audience for item in self.audiences):
            raise ClaimValidationFailure("The aud claim value is invalid.")

        with backend_call("Principal resolver"):
            tool = self.platform.resolve_counterpart(self.resolver, payload['iss'], self.platform.platform_id, None)
        if tool is None:
            raise UnknownPrincipal(f"Client {payload['iss']} is not registered.")

        if not PlatformNonce(tool, payload['jti'], self.nonce_store, self.config).consume():
            raise ReplayDetected()

        verification = client.verify(tool.principal.rsa_key, tool.principal.jku)
        if not verification.verified:
            raise SignatureInvalid(verification.reason)
        if verification.key_updated and not self.config.disable_key_autosave:
            with backend_call("Principal resolver"):
                self.resolver.save_key(tool, verification.updated_public_key, verification.updated_kid)
        return tool

    def issue(self, token_request_data):
        """
        Validate a token request and return the access token response.

        Returns:
            A dict compliant with RFC 6749 section 4.4.3, granting the
            requested scopes which are supported.

        Raises:
            LtiAuthError if the request is rejected.
        """
        # Check if all required claims are present
        for required_claim in LTI_1P3_ACCESS_TOKEN_REQUIRED_CLAIMS:
            if not token_request_data.get(required_claim):
                raise MalformedRequest(f'The required parameter {required_claim} is missing.')

        if token_request_data['grant_type'] != CLIENT_CREDENTIALS_GRANT:
            raise MalformedRequest("Unsupported grant type.")
        if token_request_data['client_assertion_type'] != CLIENT_ASSERTION_TYPE:
            raise MalformedRequest("Unsupported client assertion type.")

        tool = self.verify_client_assertion(token_request_data['client_assertion'])

        # Scopes are space separated as described in
        # https://tools.ietf.org/html/rfc6749
        valid_scopes = [
            scope for scope in _scope_list(token_request_data['scope'])
            if scope in self.supported_scopes
        ]
        scopes_str = " ".join(valid_scopes)

        issued_at = int(time.time())
        principal = self.platform.principal
        access_token = self._jwt_client().sign(
            {
                'sub': tool.principal.key,
                'iss': self.platform.platform_id,
                'aud': self.audiences or [self.platform.platform_id],
                'scopes': scopes_str,
                'iat': issued_at,
                'exp': issued_at + ACCESS_TOKEN_LIFE,
                'jti': generate_nonce(),
            },
            principal.signature_method if not principal.uses_oauth1 else 'RS256',
            principal.rsa_key,
            kid=principal.kid,
        )
        log.info("[LTI] Issued access token to %s for scopes %s", tool.principal.key, scopes_str)
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": ACCESS_TOKEN_LIFE,
            "scope": scopes_str,
        }

    def check_token(self, token, allowed_scopes=None):
        """
        Check if token is a valid token of this platform with access to one of
        the allowed scopes.

        If `allowed_scopes` is empty, only the token validity is checked.
        """
        client = self._jwt_client()
        try:
            if not client.load(token):
                raise InvalidToken()
            check_token_claim(client.get_payload(), 'iss', self.platform.platform_id)
            verification = client.verify(self.platform.principal.rsa_key)
        except LtiAuthError as err:
            log.info("[LTI] Access token rejected: %s", err)
            return False
        if not verification.verified:
            log.info("[LTI] Access token rejected: %s", verification.reason)
            return False

        if allowed_scopes:
            token_scopes = client.get_claim('scopes', '')
            return any(has_scope(token_scopes, scope) for scope in allowed_scopes)
        return True
