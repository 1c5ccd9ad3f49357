"""
Unit tests for MessageAuthenticator with LTI 1.3 messages
"""
import time
from unittest.mock import patch

import ddt
from django.core.cache import cache
from django.test.testcases import TestCase

from lti_auth.authenticator import MessageAuthenticator
from lti_auth.exceptions import (
    BackendUnavailable,
    ClaimValidationFailure,
    ReplayDetected,
    SignatureInvalid,
    UnknownPrincipal,
)
from lti_auth.lti_1p3.oidc import CacheLoginStateStore, authentication_response
from lti_auth.lti_1p3.pyjwt_client import PyJwtClient
from lti_auth.message_types import LtiMessageType, LtiVersion
from lti_auth.nonce import CacheNonceStore, PlatformNonce
from lti_auth.resolvers import StaticPrincipalResolver
from lti_auth.signer import SignatureSigner
from lti_auth.tests.utils import (
    CLIENT_ID,
    CUSTOM_CLAIM,
    ISS,
    JWKS_URL,
    LAUNCH_URL,
    LOGIN_URL,
    OTHER_PRIVATE_KEY,
    OTHER_PUBLIC_KEY,
    PLATFORM_KID,
    PLATFORM_PRIVATE_KEY,
    PLATFORM_PUBLIC_KEY,
    clear_caches,
    launch_payload,
    make_config,
    make_request,
    platform_as_sender,
    platform_registration,
    tool_as_receiver,
    tool_registration,
)

STATE = 'state-value'


class JwtAuthenticationTestCase(TestCase):
    """
    Base class: a tool receiving LTI 1.3 messages from a registered platform
    """

    def setUp(self):
        super().setUp()
        cache.clear()
        clear_caches()
        self.config = make_config()
        self.nonce_store = CacheNonceStore()
        self.platform = platform_registration()
        self.resolver = StaticPrincipalResolver([self.platform])
        self.authenticator = MessageAuthenticator(tool_as_receiver(), self.resolver, self.nonce_store, self.config)

    def _id_token_request(self, payload=None, private_key=PLATFORM_PRIVATE_KEY, kid=PLATFORM_KID, state=STATE):
        """
        Returns the launch request posted by the platform, after saving its state on the tool.
        """
        PlatformNonce(self.platform, state, self.nonce_store, self.config).save()
        token = PyJwtClient.sign(payload or launch_payload(), 'RS256', private_key, kid=kid)
        return make_request({'id_token': token, 'state': state})


@ddt.ddt
class TestJwtAuthentication(JwtAuthenticationTestCase):
    """
    Unit tests for id_token launches
    """

    def test_launch(self):
        result = self.authenticator.authenticate(self._id_token_request())

        self.assertTrue(result.ok, result.reason)
        self.assertEqual(result.message_type, LtiMessageType.LAUNCH)
        self.assertEqual(result.lti_version, LtiVersion.V1P3)
        self.assertIs(result.counterpart, self.platform)
        self.assertTrue(result.verification.verified)
        self.assertEqual(result.jwt.get_claim('sub'), 'user-1')
        self.assertEqual(result.message_parameters, {
            'lti_message_type': 'basic-lti-launch-request',
            'lti_version': '1.3.0',
            'deployment_id': 'deployment-1',
            'resource_link_id': 'resource-link-1',
            'user_id': 'user-1',
            'oauth_consumer_key': CLIENT_ID,
            'oauth_signature_method': 'RS256',
        })

    def test_state_single_use(self):
        request = self._id_token_request()
        self.assertTrue(self.authenticator.authenticate(request).ok)

        result = self.authenticator.authenticate(request)
        self.assertIsInstance(result.error, ReplayDetected)
        self.assertEqual(result.reason, "state parameter is invalid or missing")

    def test_nonce_replay(self):
        payload = launch_payload()
        self.assertTrue(self.authenticator.authenticate(self._id_token_request(payload)).ok)

        result = self.authenticator.authenticate(self._id_token_request(payload, state='other-state'))
        self.assertIsInstance(result.error, ReplayDetected)
        self.assertEqual(result.reason, "Invalid nonce.")

    def test_unknown_state(self):
        request = self._id_token_request()
        request.parameters['state'] = 'forged'

        self.assertIsInstance(self.authenticator.authenticate(request).error, ReplayDetected)

    @ddt.data(True, False)
    def test_expired(self, strict_mode):
        issued_at = int(time.time()) - 3600
        request = self._id_token_request(launch_payload(iat=issued_at, exp=issued_at + 60))

        result = self.authenticator.authenticate(request, strict_mode=strict_mode)
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, ClaimValidationFailure)
        self.assertEqual(result.reason, "The exp claim shows the token has expired.")

    @ddt.data(True, False)
    def test_issued_after_expiry(self, strict_mode):
        issued_at = int(time.time())
        request = self._id_token_request(launch_payload(iat=issued_at, exp=issued_at - 10))

        result = self.authenticator.authenticate(request, strict_mode=strict_mode)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "The iat claim must not be later than the exp claim.")

    def test_string_time_claims(self):
        issued_at = int(time.time())
        payload = launch_payload(iat=str(issued_at), exp=str(issued_at + 60))

        self.assertTrue(self.authenticator.authenticate(self._id_token_request(payload)).ok)
        result = self.authenticator.authenticate(self._id_token_request(launch_payload(
            iat=str(issued_at), exp=str(issued_at + 60),
        ), state='other-state'), strict_mode=True)
        self.assertIsInstance(result.error, ClaimValidationFailure)

    @ddt.data('iss', 'aud', 'iat', 'exp', 'nonce')
    def test_missing_claim(self, claim):
        payload = launch_payload()
        del payload[claim]

        result = self.authenticator.authenticate(self._id_token_request(payload))
        self.assertEqual(result.reason, f"Missing {claim} claim")

    def test_missing_deployment_id(self):
        payload = launch_payload()
        del payload['https://purl.imsglobal.org/spec/lti/claim/deployment_id']

        result = self.authenticator.authenticate(self._id_token_request(payload))
        self.assertEqual(result.reason, "Missing deployment_id claim")

    def test_azp_not_in_audience(self):
        result = self.authenticator.authenticate(self._id_token_request(launch_payload(azp='other-client')))
        self.assertIsInstance(result.error, ClaimValidationFailure)

    def test_unknown_platform(self):
        request = self._id_token_request(launch_payload(iss='https://other.example.com'))
        result = self.authenticator.authenticate(request)
        self.assertIsInstance(result.error, UnknownPrincipal)

    def test_wrong_signature(self):
        result = self.authenticator.authenticate(self._id_token_request(private_key=OTHER_PRIVATE_KEY))

        self.assertIsInstance(result.error, SignatureInvalid)
        self.assertFalse(result.ok)

    def test_invalid_token(self):
        result = self.authenticator.authenticate(make_request({'id_token': 'not-a-jwt', 'state': STATE}))
        self.assertEqual(result.reason, "The JWT could not be parsed because it is malformed.")

    def test_custom_claims_lenient(self):
        payload = launch_payload(**{CUSTOM_CLAIM: {'level': 3, 'name': 'value'}})

        result = self.authenticator.authenticate(self._id_token_request(payload), generate_warnings=True)

        self.assertTrue(result.ok, result.reason)
        self.assertEqual(result.message_parameters['custom_level'], '3')
        self.assertEqual(result.message_parameters['custom_name'], 'value')
        self.assertEqual(len(result.warnings), 1)

    def test_custom_claims_strict(self):
        payload = launch_payload(**{CUSTOM_CLAIM: {'level': 3}})

        result = self.authenticator.authenticate(self._id_token_request(payload), strict_mode=True)

        self.assertIsInstance(result.error, ClaimValidationFailure)
        self.assertIn("is not a string", result.reason)

    def test_deep_linking_without_targets(self):
        payload = launch_payload(**{
            'https://purl.imsglobal.org/spec/lti/claim/message_type': 'LtiDeepLinkingRequest',
            'https://purl.imsglobal.org/spec/lti-dl/claim/deep_linking_settings': {
                'accept_types': ['ltiResourceLink'],
                'deep_link_return_url': 'https://platform.example.com/deep-link',
            },
        })
        lenient = self.authenticator.authenticate(self._id_token_request(payload), generate_warnings=True)

        self.assertTrue(lenient.ok, lenient.reason)
        self.assertEqual(lenient.message_type, LtiMessageType.CONTENT_ITEM_SELECTION_REQUEST)
        self.assertEqual(lenient.message_parameters['accept_media_types'], 'application/vnd.ims.lti.v1.ltilink')
        self.assertIn("Missing accept_presentation_document_targets parameter.", lenient.warnings)
        self.assertEqual(lenient.return_url, 'https://platform.example.com/deep-link')

        payload['nonce'] = 'another-nonce'
        strict = self.authenticator.authenticate(
            self._id_token_request(payload, state='other-state'), strict_mode=True,
        )
        self.assertFalse(strict.ok)
        self.assertEqual(strict.reason, "Missing accept_presentation_document_targets parameter.")


class TestKeyRotation(JwtAuthenticationTestCase):
    """
    A platform publishing a new key at its JWKS URL
    """

    def setUp(self):
        super().setUp()
        self.platform.principal.rsa_key = OTHER_PUBLIC_KEY
        self.platform.principal.jku = JWKS_URL
        self.jwks = PyJwtClient(self.config).get_jwks(PLATFORM_PUBLIC_KEY, kid=PLATFORM_KID)

    def test_rotated_key_saved(self):
        with patch('lti_auth.lti_1p3.jwt_client.fetch_jwks', return_value=self.jwks) as mock_fetch:
            with patch.object(self.resolver, 'save_key', wraps=self.resolver.save_key) as mock_save:
                result = self.authenticator.authenticate(self._id_token_request())

        self.assertTrue(result.ok, result.reason)
        mock_fetch.assert_called_once_with(JWKS_URL)
        mock_save.assert_called_once_with(self.platform, result.verification.updated_public_key, PLATFORM_KID)
        self.assertEqual(self.platform.principal.kid, PLATFORM_KID)
        self.assertNotEqual(self.platform.principal.rsa_key, OTHER_PUBLIC_KEY)

    def test_autosave_disabled(self):
        authenticator = MessageAuthenticator(
            tool_as_receiver(), self.resolver, self.nonce_store, make_config(disable_key_autosave=True),
        )
        with patch('lti_auth.lti_1p3.jwt_client.fetch_jwks', return_value=self.jwks):
            result = authenticator.authenticate(self._id_token_request())

        self.assertTrue(result.ok, result.reason)
        self.assertTrue(result.verification.key_updated)
        self.assertEqual(self.platform.principal.rsa_key, OTHER_PUBLIC_KEY)

    def test_rotation_fails(self):
        jwks = PyJwtClient(self.config).get_jwks(OTHER_PUBLIC_KEY, kid=PLATFORM_KID)
        with patch('lti_auth.lti_1p3.jwt_client.fetch_jwks', return_value=jwks) as mock_fetch:
            result = self.authenticator.authenticate(self._id_token_request())

        mock_fetch.assert_called_once_with(JWKS_URL)
        self.assertIsInstance(result.error, SignatureInvalid)


@ddt.ddt
class TestFailingCollaborators(JwtAuthenticationTestCase):
    """
    A JWKS endpoint, nonce store or resolver misbehaving fails the authentication without raising
    """

    def setUp(self):
        super().setUp()
        self.platform.principal.rsa_key = None
        self.platform.principal.jku = JWKS_URL

    @ddt.data(
        [{'kid': PLATFORM_KID}],
        {'keys': None},
        {'keys': ['not-a-key']},
        'not-a-key-set',
    )
    def test_invalid_jwks(self, jwks):
        request = self._id_token_request()
        with patch('lti_auth.lti_1p3.jwt_client.fetch_jwks', return_value=jwks):
            result = self.authenticator.authenticate(request)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, SignatureInvalid)
        self.assertIn('Invalid JSON Web Key Set', result.reason)

    def test_nonce_store_error(self):
        request = self._id_token_request()
        with patch.object(self.nonce_store, 'save', side_effect=ConnectionError('cache down')):
            with self.assertLogs('lti_auth.utils', level='ERROR'):
                result = self.authenticator.authenticate(request)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, BackendUnavailable)
        self.assertEqual(result.reason, "Nonce store failed.")

    def test_resolver_error(self):
        request = self._id_token_request()
        with patch.object(self.resolver, 'from_platform_id', side_effect=RuntimeError('database down')):
            result = self.authenticator.authenticate(request)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, BackendUnavailable)
        self.assertEqual(result.reason, "Principal resolver failed.")

    def test_key_save_error(self):
        self.platform.principal.rsa_key = OTHER_PUBLIC_KEY
        jwks = PyJwtClient(self.config).get_jwks(PLATFORM_PUBLIC_KEY, kid=PLATFORM_KID)
        request = self._id_token_request()
        with patch('lti_auth.lti_1p3.jwt_client.fetch_jwks', return_value=jwks):
            with patch.object(self.resolver, 'save_key', side_effect=OSError('read-only')):
                result = self.authenticator.authenticate(request)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, BackendUnavailable)


class TestLoginFlow(JwtAuthenticationTestCase):
    """
    A complete third party initiated login, from the platform's message to the tool's launch
    """

    def test_launch_through_login(self):
        login_store = CacheLoginStateStore()
        signer = SignatureSigner(platform_as_sender(), tool_registration(), self.config, login_store=login_store)

        login = signer.sign_message(LAUNCH_URL, LtiMessageType.LAUNCH, parameters={
            'resource_link_id': 'resource-link-1',
            'user_id': 'user-1',
            'roles': 'Learner',
        })
        self.assertTrue(login.ok, login.reason)
        self.assertEqual(login.url, LOGIN_URL)
        self.assertTrue(self.authenticator.is_login_request(make_request(login.parameters, method='GET')))

        auth_request = self.authenticator.initiate_login(make_request(login.parameters, url=LOGIN_URL, method='GET'))
        self.assertTrue(auth_request.ok, auth_request.reason)

        response = authentication_response(signer, auth_request.parameters, login_store)
        result = self.authenticator.authenticate(make_request(response.parameters, url=response.url))

        self.assertTrue(result.ok, result.reason)
        self.assertEqual(result.message_parameters['resource_link_id'], 'resource-link-1')
        self.assertEqual(result.message_parameters['user_id'], 'user-1')
        self.assertEqual(result.get_roles(), ['http://purl.imsglobal.org/vocab/lis/v2/membership#Learner'])

    def test_initiate_login_unknown_platform(self):
        signed = self.authenticator.initiate_login(make_request({
            'iss': 'https://other.example.com',
            'login_hint': 'user-1',
            'target_link_uri': LAUNCH_URL,
        }, method='GET'))

        self.assertFalse(signed.ok)
        self.assertIsInstance(signed.error, UnknownPrincipal)


class TestToolMessages(TestCase):
    """
    A platform authenticating messages signed by a tool
    """

    def setUp(self):
        super().setUp()
        cache.clear()
        self.config = make_config()
        self.tool = tool_registration()
        self.authenticator = MessageAuthenticator(
            platform_as_sender(), StaticPrincipalResolver([self.tool]), CacheNonceStore(), self.config,
        )
        self.signer = SignatureSigner(tool_as_receiver(), platform_registration(), self.config)

    def test_deep_linking_response(self):
        signed = self.signer.sign_message(
            'https://platform.example.com/deep-link',
            'ContentItemSelection',
            parameters={'content_items': '[]', 'data': 'opaque'},
        )
        self.assertTrue(signed.ok, signed.reason)
        self.assertEqual(list(signed.parameters), ['JWT'])

        result = self.authenticator.authenticate(make_request(signed.parameters))

        self.assertTrue(result.ok, result.reason)
        self.assertEqual(result.message_type, LtiMessageType.CONTENT_ITEM_SELECTION)
        self.assertIs(result.counterpart, self.tool)
        self.assertEqual(result.message_parameters['data'], 'opaque')
        self.assertEqual(result.message_parameters['content_items'], '[]')
        self.assertEqual(result.jwt.get_claim('iss'), CLIENT_ID)
        self.assertEqual(result.jwt.get_claim('aud'), [ISS])
