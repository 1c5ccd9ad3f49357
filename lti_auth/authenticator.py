"""
Authentication of incoming LTI messages.

A MessageAuthenticator belongs to the receiving party (a Tool receiving
launches, or a Platform receiving messages and token requests from tools).
It verifies the OAuth1 or JWT signature of a message, rejects replays,
translates LTI 1.3 claims into the flat LTI 1.x parameters, and applies the
structural checks of the message type.
"""
import logging
import time

from .checks import ParameterConstraint, check_constraints, check_message
from .config import LtiAuthConfig
from .data import AuthenticationResult, SignedMessage
from .exceptions import (
    ClaimValidationFailure,
    InvalidToken,
    LtiAuthError,
    MalformedRequest,
    ReplayDetected,
    SignatureInvalid,
    UnknownPrincipal,
)
from .lti_1p1.oauth import NonceRequestValidator, collect_oauth_parameters, is_form_content_type, verify_oauth_request
from .lti_1p3.claims import claims_to_parameters
from .lti_1p3.constants import (
    CLIENT_ASSERTION_TYPE,
    CLIENT_CREDENTIALS_GRANT,
    LTI_1P3_DEPLOYMENT_ID_CLAIM,
    LTI_1P3_STANDARD_CLAIMS,
)
from .lti_1p3.oidc import authentication_request
from .message_types import LtiVersion
from .nonce import PlatformNonce
from .utils import backend_call

log = logging.getLogger(__name__)

OAUTH1_REQUIRED_PARAMETERS = ('oauth_signature_method', 'oauth_signature', 'oauth_nonce', 'oauth_timestamp')
INVALID_STATE = "state parameter is invalid or missing"


class MessageAuthenticator:
    """
    Authenticates messages received by a Platform or a Tool.

    Arguments:
        receiver: the receiving Platform or Tool. Its private key decrypts encrypted tokens.
        resolver: PrincipalResolver finding the sending party.
        nonce_store: NonceStore used for replay protection.
        config: LtiAuthConfig, read from the settings when not given.
        access_token_issuer: AccessTokenIssuer answering client credentials
            requests, for a Platform receiver.
    """

    def __init__(self, receiver, resolver, nonce_store, config=None, access_token_issuer=None):
        self.receiver = receiver
        self.resolver = resolver
        self.nonce_store = nonce_store
        self.config = config or LtiAuthConfig.from_settings()
        self.access_token_issuer = access_token_issuer
        self.parameter_constraints = {}

    def set_parameter_constraint(self, name, required=True, max_length=None, message_types=None):
        """
        Require a parameter, or limit its length, for all or some message types.
        """
        self.parameter_constraints[name] = ParameterConstraint(
            required=required,
            max_length=max_length,
            message_types=message_types,
        )

    @staticmethod
    def is_login_request(request):
        """
        Return True for a third party initiated login request.
        """
        parameters = request.parameters
        return bool(parameters.get('iss')) and not (parameters.get('id_token') or parameters.get('JWT'))

    def initiate_login(self, request, redirect_uri=None):
        """
        Answer an initiate login request (on a Tool) with an authentication request.

        Returns a SignedMessage for the platform's authentication URL; check
        its ``ok`` attribute.
        """
        try:
            return authentication_request(
                request.parameters, self.resolver, self.nonce_store, self.config, redirect_uri,
            )
        except LtiAuthError as err:
            log.error("[LTI] Initiate login request failed: %s", err)
            signed = SignedMessage()
            signed.fail(err)
            return signed

    def authenticate(self, request, strict_mode=None, generate_warnings=False):
        """
        Authenticate an LtiRequest.

        Returns an AuthenticationResult. When ``ok`` is False, ``reason``
        describes the first failure and the message parameters must not be
        used.
        """
        result = AuthenticationResult(
            strict_mode=self.config.strict_mode if strict_mode is None else strict_mode,
            generate_warnings=generate_warnings,
            raw_parameters=dict(request.parameters),
        )
        try:
            self._authenticate(request, result)
        except LtiAuthError as err:
            log.error("[LTI] Message authentication failed for %s: %s", request.url, err)
            result.fail(err)
        return result

    def _authenticate(self, request, result):
        if request.method.upper() != 'POST':
            raise MalformedRequest("LTI messages must use HTTP POST")

        parameters = request.parameters
        if parameters.get('id_token') or parameters.get('JWT'):
            self._authenticate_jwt(request, result)
            is_jwt = True
        elif parameters.get('error'):
            if parameters.get('error_description'):
                result.details.append(parameters['error_description'])
            raise MalformedRequest(parameters['error'])
        elif (parameters.get('grant_type') == CLIENT_CREDENTIALS_GRANT
              and parameters.get('client_assertion_type') == CLIENT_ASSERTION_TYPE):
            self._issue_access_token(parameters, result)
            return
        else:
            self._authenticate_oauth1(request, result)
            is_jwt = False

        message_type = check_message(result, is_jwt)
        check_constraints(result.message_parameters, self.parameter_constraints, message_type)

    def _issue_access_token(self, parameters, result):
        if self.access_token_issuer is None:
            raise MalformedRequest("Access tokens are not issued by this endpoint.")
        result.access_token = self.access_token_issuer.issue(parameters)
        result.message_parameters = {
            name: parameters[name] for name in ('grant_type', 'scope') if name in parameters
        }

    # OAuth1

    def _authenticate_oauth1(self, request, result):
        headers = dict(request.headers)
        oauth_parameters = collect_oauth_parameters(request.parameters, headers)
        consumer_key = oauth_parameters.get('oauth_consumer_key')
        if not consumer_key:
            raise MalformedRequest("Missing consumer key.")
        for name in OAUTH1_REQUIRED_PARAMETERS:
            if not oauth_parameters.get(name):
                raise MalformedRequest(f"Missing {name} parameter.")

        with backend_call("Principal resolver"):
            counterpart = self.resolver.from_consumer_key(consumer_key)
        if counterpart is None:
            raise UnknownPrincipal(f"Invalid consumer key: {consumer_key}")

        content_type = headers.get('Content-Type')
        if content_type is None and request.body is None:
            content_type = headers['Content-Type'] = 'application/x-www-form-urlencoded'
        body = request.form_body() if is_form_content_type(content_type) else request.body

        validator = NonceRequestValidator(counterpart.principal, counterpart, self.nonce_store, self.config)
        verify_oauth_request(request.url, request.method.upper(), body, headers, validator)

        result.counterpart = counterpart
        result.message_parameters = {
            name: value for name, value in request.parameters.items() if name != 'oauth_signature'
        }
        result.message_parameters.setdefault('oauth_consumer_key', consumer_key)

    # LTI 1.3

    def _authenticate_jwt(self, request, result):
        parameters = request.parameters
        is_id_token = bool(parameters.get('id_token'))
        client = self.config.get_jwt_client_class()(self.config)
        if not client.load(parameters.get('id_token') or parameters.get('JWT'), self.receiver.principal.rsa_key):
            raise InvalidToken()
        result.jwt = client

        iss, audience, deployment_id, nonce = self._check_standard_claims(client, result, is_id_token)

        with backend_call("Principal resolver"):
            counterpart = self.receiver.resolve_counterpart(self.resolver, iss, audience, deployment_id)
        if counterpart is None:
            raise UnknownPrincipal(
                f"No registration for issuer {iss}, client {audience} and deployment {deployment_id}."
            )
        result.counterpart = counterpart

        if is_id_token:
            self._check_state(parameters.get('state'), iss, audience, deployment_id)

        translation = claims_to_parameters(client.get_payload(), result.strict_mode)
        for warning in translation.warnings:
            result.warn(warning)
        if translation.errors:
            result.details.extend(translation.errors)
            raise ClaimValidationFailure(translation.errors[0])

        if not PlatformNonce(counterpart, nonce, self.nonce_store, self.config).consume():
            raise ReplayDetected()

        principal = counterpart.principal
        verification = client.verify(principal.rsa_key, principal.jku)
        result.verification = verification
        if not verification.verified:
            raise SignatureInvalid(verification.reason)
        if verification.key_updated and not self.config.disable_key_autosave:
            log.info("[LTI] Saving rotated key %s for %s", verification.updated_kid, iss)
            with backend_call("Principal resolver"):
                self.resolver.save_key(counterpart, verification.updated_public_key, verification.updated_kid)

        message_parameters = translation.parameters
        message_parameters['oauth_consumer_key'] = audience
        message_parameters['oauth_signature_method'] = client.get_header('alg')
        message_parameters.setdefault('lti_version', LtiVersion.V1P3.value)
        result.message_parameters = message_parameters

    @staticmethod
    def _integer_claim(client, name, result):
        value = client.get_claim(name)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            result.should(False, f"The {name} claim must be an integer", ClaimValidationFailure)
            return int(value)
        raise ClaimValidationFailure(f"The {name} claim must be an integer")

    def _check_standard_claims(self, client, result, is_id_token):
        """
        Check the registered claims of the token.

        Returns the issuer, the effective audience, the deployment id and the nonce.
        """
        for claim in LTI_1P3_STANDARD_CLAIMS:
            if not client.has_claim(claim):
                raise ClaimValidationFailure(f"Missing {claim} claim")

        issued_at = self._integer_claim(client, 'iat', result)
        expires = self._integer_claim(client, 'exp', result)
        if issued_at > expires:
            raise ClaimValidationFailure("The iat claim must not be later than the exp claim.")
        if expires < time.time() - self.config.leeway:
            raise ClaimValidationFailure("The exp claim shows the token has expired.")

        nonce = client.get_claim('nonce')
        if not isinstance(nonce, str) or not nonce:
            raise ClaimValidationFailure("The nonce claim must be a non-empty string.")
        iss = client.get_claim('iss')
        if not isinstance(iss, str) or not iss:
            raise ClaimValidationFailure("Missing iss claim")

        aud = client.get_claim('aud')
        if isinstance(aud, str):
            audiences = [aud]
        elif isinstance(aud, list):
            audiences = aud
        else:
            raise ClaimValidationFailure("The aud claim must be a string or an array.")
        azp = client.get_claim('azp')
        if azp:
            if azp not in audiences:
                raise ClaimValidationFailure("The azp claim must be one of the aud claim values.")
            audience = azp
        else:
            audience = audiences[0] if audiences else None
            if not audience:
                raise ClaimValidationFailure("The aud claim must not be empty.")

        deployment_id = client.get_claim(LTI_1P3_DEPLOYMENT_ID_CLAIM)
        if is_id_token and not deployment_id:
            raise ClaimValidationFailure("Missing deployment_id claim")
        return iss, audience, deployment_id, nonce

    def _check_state(self, state, iss, audience, deployment_id):
        """
        Match the state of a login response with the nonce saved for the platform.

        The platform is looked up by issuer, client id and deployment id, then
        more loosely, to allow for registrations completed during the login.
        The state is single use.
        """
        if not state:
            raise ReplayDetected(INVALID_STATE)
        candidates = []
        for lookup in ((iss, audience, deployment_id), (iss, audience, None), (iss, None, None)):
            with backend_call("Principal resolver"):
                platform = self.receiver.resolve_counterpart(self.resolver, *lookup)
            if platform is not None and all(platform is not other for other in candidates):
                candidates.append(platform)
        for platform in candidates:
            state_nonce = PlatformNonce(platform, state, self.nonce_store, self.config)
            if state_nonce.load() and state_nonce.delete():
                return
        log.warning("[LTI] No state %s found for platform %s", state, iss)
        raise ReplayDetected(INVALID_STATE)
