"""
Signing of outgoing LTI messages and service requests.

The signing path follows the sender's signature method: OAuth1 (HMAC) form
parameters or Authorization headers, or LTI 1.3 JWTs. A Platform sending an
LTI 1.3 message does not sign it straight away; the message is stashed and an
initiate login request is sent to the tool instead (see ``lti_1p3.oidc``).
"""
import logging
import time

from .config import LtiAuthConfig
from .data import Platform, SignedMessage
from .exceptions import LtiAuthError, MalformedRequest, RsaKeyNotSet
from .lti_1p1.oauth import sign_form_parameters, sign_service_request
from .lti_1p3.claims import parameters_to_claims
from .lti_1p3.constants import (
    CLIENT_ASSERTION_TYPE,
    CLIENT_CREDENTIALS_GRANT,
    LTI_1P3_DEPLOYMENT_ID_CLAIM,
    LTI_1P3_TARGET_LINK_URI_CLAIM,
)
from .lti_1p3.oidc import initiate_login
from .message_types import LtiVersion
from .utils import generate_nonce, render_auto_submit_form

log = logging.getLogger(__name__)

DEFAULT_JWT_SIGNATURE_METHOD = 'RS256'


def _service_header(authorization, body, content_type):
    lines = [authorization]
    if body:
        lines.append(f"Content-Type: {content_type}; charset=UTF-8")
        lines.append(f"Content-Length: {len(body.encode('utf-8'))}")
    elif content_type:
        lines.append(f"Accept: {content_type}")
    return '\n'.join(lines)


class SignatureSigner:
    """
    Signs messages sent by a Platform or a Tool.

    Arguments:
        sender: the sending Platform or Tool, holding the signing credentials.
            OAuth1 uses its principal's key and secret; JWTs are signed with its
            principal's private key.
        counterpart: the receiving party, needed for LTI 1.3 (client ids,
            encryption key, access token).
        config: LtiAuthConfig, read from the settings when not given.
        login_store: LoginStateStore stashing LTI 1.3 messages sent by a Platform.
    """

    def __init__(self, sender, counterpart=None, config=None, login_store=None):
        self.sender = sender
        self.counterpart = counterpart
        self.config = config or LtiAuthConfig.from_settings()
        self.login_store = login_store

    @property
    def is_platform(self):
        return isinstance(self.sender, Platform)

    @property
    def principal(self):
        return self.sender.principal

    @property
    def default_version(self):
        return LtiVersion.V1 if self.principal.uses_oauth1 else LtiVersion.V1P3

    def _platform(self):
        return self.sender if self.is_platform else self.counterpart

    def _client_id(self):
        platform = self._platform()
        if platform is not None and platform.client_id:
            return platform.client_id
        return self.principal.key

    def _sign_jwt(self, payload):
        principal = self.principal
        if not principal.rsa_key:
            raise RsaKeyNotSet()
        signature_method = DEFAULT_JWT_SIGNATURE_METHOD if principal.uses_oauth1 else principal.signature_method
        issued_at = int(time.time())
        payload['iat'] = issued_at
        payload['exp'] = issued_at + self.config.jwt_life
        encryption_method = principal.encryption_method
        public_key = self.counterpart.principal.rsa_key if encryption_method and self.counterpart else None
        client_class = self.config.get_jwt_client_class()
        if encryption_method and not client_class.supports_encryption:
            raise MalformedRequest(f"{client_class.__name__} cannot encrypt JWTs with {encryption_method}.")
        return client_class.sign(
            payload,
            signature_method,
            principal.rsa_key,
            kid=principal.kid,
            jku=principal.jku,
            encryption_method=encryption_method,
            public_key=public_key,
        )

    def sign_jwt_message(self, url, parameters, nonce=None):
        """
        Return the JWT carrying a message.

        From a Platform the token is addressed to the tool's client id; from a
        Tool it is addressed to the platform.
        """
        payload = parameters_to_claims(parameters)
        platform = self._platform()
        if self.is_platform:
            payload['iss'] = platform.platform_id
            payload['aud'] = [platform.client_id]
            payload['azp'] = platform.client_id
            payload[LTI_1P3_TARGET_LINK_URI_CLAIM] = url
        else:
            payload['iss'] = self._client_id()
            payload['aud'] = [platform.platform_id] if platform is not None else payload.get('aud', [])
        if platform is not None and platform.deployment_id:
            payload[LTI_1P3_DEPLOYMENT_ID_CLAIM] = platform.deployment_id
        payload['nonce'] = nonce or generate_nonce()
        return self._sign_jwt(payload)

    def _client_assertion(self, endpoint):
        platform = self._platform()
        client_id = self._client_id()
        audience = platform.authorization_server_id if platform is not None else None
        return self._sign_jwt({
            'iss': client_id,
            'sub': client_id,
            'aud': [audience or endpoint],
            'jti': generate_nonce(),
        })

    def add_signature(self, endpoint, data, method='POST', content_type=None, nonce=None,
                      body_hash=None, timestamp=None):
        """
        Sign a message or service request.

        ``data`` is either a dict of form parameters, for which the signed
        parameters are returned, or a request body, for which the header block
        (``Authorization``, then ``Content-Type``/``Content-Length`` or
        ``Accept``) is returned.

        Raises:
            LtiAuthError if the request cannot be signed.
        """
        principal = self.principal
        if principal.uses_oauth1:
            if isinstance(data, dict):
                return sign_form_parameters(
                    principal.key, principal.secret, endpoint, data,
                    signature_method=principal.signature_method,
                    http_method=method,
                    nonce=nonce,
                    timestamp=timestamp,
                )
            return sign_service_request(
                principal.key, principal.secret, endpoint,
                http_method=method,
                body=data,
                content_type=content_type,
                signature_method=principal.signature_method,
                nonce=nonce,
                timestamp=timestamp,
                body_hash=body_hash,
            )

        if isinstance(data, dict):
            if data.get('grant_type'):
                signed = dict(data)
                signed['client_assertion'] = self._client_assertion(endpoint)
                return signed
            field_name = 'id_token' if self.is_platform else 'JWT'
            return {field_name: self.sign_jwt_message(endpoint, data, nonce=nonce)}

        if isinstance(data, bytes):
            data = data.decode('utf-8')
        platform = self._platform()
        access_token = platform.access_token if platform is not None else None
        return _service_header(f"Authorization: Bearer {access_token}", data or '', content_type)

    def sign_parameters(self, url, message_type, version, parameters):
        """
        Add the message type and version to message parameters and sign them.
        """
        parameters = dict(parameters)
        parameters['lti_message_type'] = message_type
        parameters['lti_version'] = version
        return self.add_signature(url, parameters)

    def sign_message(self, url, message_type, version=None, parameters=None, login_hint=None,
                     lti_message_hint=None):
        """
        Return the SignedMessage to send to a URL.

        A Platform sending an LTI 1.3 message returns the initiate login
        request for the tool instead, the message being stashed until the
        tool's authentication request.
        """
        version = version or self.default_version
        if isinstance(version, LtiVersion):
            version = version.value
        if hasattr(message_type, 'value'):
            message_type = message_type.value
        parameters = dict(parameters or {})
        signed = SignedMessage(url=url)
        try:
            if self.is_platform and version == LtiVersion.V1P3.value:
                if self.login_store is None:
                    raise MalformedRequest("A login state store is required to send LTI 1.3 messages.")
                parameters['lti_message_type'] = message_type
                parameters['lti_version'] = version
                return initiate_login(
                    self.sender, self.counterpart, url, parameters, self.login_store, self.config,
                    login_hint=login_hint, lti_message_hint=lti_message_hint,
                )
            signed.parameters = self.sign_parameters(url, message_type, version, parameters)
        except LtiAuthError as err:
            log.error("[LTI] Unable to sign %s message for %s: %s", message_type, url, err)
            signed.fail(err)
        return signed

    def send_message(self, url, message_type, parameters=None, target='', version=None, login_hint=None,
                     lti_message_hint=None):
        """
        Return an HTML page posting the signed message to its URL.

        Raises:
            LtiAuthError if the message cannot be signed.
        """
        signed = self.sign_message(
            url, message_type, version, parameters, login_hint=login_hint, lti_message_hint=lti_message_hint,
        )
        if not signed.ok:
            raise signed.error
        return render_auto_submit_form(signed.url, signed.parameters, target)

    def sign_service_request(self, url, method='POST', content_type=None, body=''):
        """
        Return the header block of a signed service request.
        """
        return self.add_signature(url, body, method=method, content_type=content_type)

    def client_credentials_request(self, url, scopes):
        """
        Return the form parameters of an access token request to a platform.
        """
        return self.add_signature(url, {
            'grant_type': CLIENT_CREDENTIALS_GRANT,
            'client_assertion_type': CLIENT_ASSERTION_TYPE,
            'scope': ' '.join(scopes) if not isinstance(scopes, str) else scopes,
        })