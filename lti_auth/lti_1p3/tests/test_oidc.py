"""
Unit tests for the LTI 1.3 third party initiated login
"""
from unittest.mock import patch

import ddt
from django.core.cache import cache
from django.test.testcases import TestCase

from lti_auth.exceptions import BackendUnavailable, MalformedRequest, UnknownPrincipal
from lti_auth.lti_1p3.constants import LTI_1P3_DEPLOYMENT_ID_CLAIM, LTI_1P3_TARGET_LINK_URI_CLAIM
from lti_auth.lti_1p3.oidc import (
    CacheLoginStateStore,
    authentication_request,
    authentication_response,
    initiate_login,
    validate_authentication_request,
)
from lti_auth.lti_1p3.pyjwt_client import PyJwtClient
from lti_auth.nonce import CacheNonceStore, PlatformNonce
from lti_auth.resolvers import StaticPrincipalResolver
from lti_auth.signer import SignatureSigner
from lti_auth.tests.utils import (
    AUTH_URL,
    CLIENT_ID,
    DEPLOYMENT_ID,
    ISS,
    LAUNCH_URL,
    LOGIN_URL,
    TOOL_PRIVATE_KEY,
    clear_caches,
    make_config,
    platform_as_sender,
    platform_registration,
    tool_registration,
)

MESSAGE_PARAMETERS = {
    'lti_message_type': 'basic-lti-launch-request',
    'lti_version': '1.3.0',
    'resource_link_id': 'resource-link-1',
    'user_id': 'user-1',
}


@ddt.ddt
class TestLogin(TestCase):
    """
    Unit tests for the three legs of the login
    """

    def setUp(self):
        super().setUp()
        cache.clear()
        clear_caches()
        self.config = make_config()
        self.login_store = CacheLoginStateStore()
        self.nonce_store = CacheNonceStore()
        self.platform = platform_as_sender()
        self.tool = tool_registration()
        self.platform_registration = platform_registration()
        self.resolver = StaticPrincipalResolver([self.platform_registration])
        self.signer = SignatureSigner(self.platform, self.tool, self.config, login_store=self.login_store)

    def _login(self, parameters=None, **kwargs):
        return initiate_login(
            self.platform, self.tool, LAUNCH_URL, parameters or MESSAGE_PARAMETERS,
            self.login_store, self.config, **kwargs
        )

    def _authentication_request(self, login):
        return authentication_request(login.parameters, self.resolver, self.nonce_store, self.config)

    def test_initiate_login(self):
        login = self._login()

        self.assertEqual(login.url, LOGIN_URL)
        self.assertEqual(login.method, 'GET')
        state_key = login.parameters.pop('lti_message_hint')
        self.assertEqual(login.parameters, {
            'iss': ISS,
            'target_link_uri': LAUNCH_URL,
            'login_hint': 'user-1',
            'client_id': CLIENT_ID,
            'lti_deployment_id': DEPLOYMENT_ID,
        })
        self.assertEqual(self.login_store.load(state_key), {
            'url': LAUNCH_URL,
            'parameters': MESSAGE_PARAMETERS,
            'login_hint': 'user-1',
            'lti_message_hint': None,
        })

    def test_initiate_login_anonymous(self):
        login = self._login({'resource_link_id': 'resource-link-1'})
        self.assertEqual(login.parameters['login_hint'], 'Anonymous')

    def test_initiate_login_hints(self):
        login = self._login(login_hint='hint', lti_message_hint='message')
        stash = self.login_store.load(login.parameters['lti_message_hint'])

        self.assertEqual(login.parameters['login_hint'], 'hint')
        self.assertEqual(stash['lti_message_hint'], 'message')

    def test_authentication_request(self):
        login = self._login()
        request = self._authentication_request(login)

        self.assertEqual(request.url, AUTH_URL)
        self.assertEqual(request.method, 'POST')
        parameters = request.parameters
        self.assertEqual(parameters['client_id'], CLIENT_ID)
        self.assertEqual(parameters['login_hint'], 'user-1')
        self.assertEqual(parameters['lti_message_hint'], login.parameters['lti_message_hint'])
        self.assertEqual(parameters['redirect_uri'], LAUNCH_URL)
        self.assertEqual(parameters['response_type'], 'id_token')
        self.assertEqual(parameters['response_mode'], 'form_post')
        self.assertEqual(parameters['scope'], 'openid')
        self.assertEqual(parameters['prompt'], 'none')
        self.assertTrue(parameters['nonce'])
        self.assertTrue(
            PlatformNonce(self.platform_registration, parameters['state'], self.nonce_store, self.config).load()
        )

    def test_redirect_uri_strips_login_parameters(self):
        login = self._login()
        login.parameters['target_link_uri'] = f'{LAUNCH_URL}?iss={ISS}&course=1&login_hint=user-1'

        request = self._authentication_request(login)
        self.assertEqual(request.parameters['redirect_uri'], f'{LAUNCH_URL}?course=1')

    @ddt.data('iss', 'login_hint', 'target_link_uri')
    def test_authentication_request_missing_parameter(self, name):
        login = self._login()
        del login.parameters[name]

        with self.assertRaisesRegex(MalformedRequest, name):
            self._authentication_request(login)

    def test_authentication_request_unknown_platform(self):
        login = self._login()
        login.parameters['iss'] = 'https://unknown.example.com'

        with self.assertRaises(UnknownPrincipal):
            self._authentication_request(login)

    def test_authentication_response(self):
        request = self._authentication_request(self._login())
        response = authentication_response(self.signer, request.parameters, self.login_store)

        self.assertEqual(response.url, LAUNCH_URL)
        self.assertEqual(response.parameters['state'], request.parameters['state'])

        client = PyJwtClient(self.config)
        self.assertTrue(client.load(response.parameters['id_token'], TOOL_PRIVATE_KEY))
        self.assertEqual(client.get_claim('iss'), ISS)
        self.assertEqual(client.get_claim('aud'), [CLIENT_ID])
        self.assertEqual(client.get_claim('azp'), CLIENT_ID)
        self.assertEqual(client.get_claim('nonce'), request.parameters['nonce'])
        self.assertEqual(client.get_claim('sub'), 'user-1')
        self.assertEqual(client.get_claim(LTI_1P3_DEPLOYMENT_ID_CLAIM), DEPLOYMENT_ID)
        self.assertEqual(client.get_claim(LTI_1P3_TARGET_LINK_URI_CLAIM), LAUNCH_URL)
        self.assertTrue(client.verify(self.platform_registration.principal.rsa_key).verified)

    def test_authentication_response_single_use(self):
        request = self._authentication_request(self._login())
        authentication_response(self.signer, request.parameters, self.login_store)

        with self.assertRaisesRegex(MalformedRequest, "login state"):
            authentication_response(self.signer, request.parameters, self.login_store)

    def test_authentication_response_wrong_login_hint(self):
        request = self._authentication_request(self._login())
        parameters = dict(request.parameters, login_hint='someone-else')

        with self.assertRaisesRegex(MalformedRequest, "login_hint"):
            authentication_response(self.signer, parameters, self.login_store)

    def test_initiate_login_store_error(self):
        with patch.object(self.login_store, 'save', side_effect=ConnectionError('cache down')):
            with self.assertRaisesRegex(BackendUnavailable, "Login state store failed."):
                self._login()

    def test_authentication_response_store_error(self):
        request = self._authentication_request(self._login())

        with patch.object(self.login_store, 'load', side_effect=ConnectionError('cache down')):
            with self.assertRaises(BackendUnavailable):
                authentication_response(self.signer, request.parameters, self.login_store)

    def test_authentication_request_resolver_error(self):
        login = self._login()

        with patch.object(self.resolver, 'from_platform_id', side_effect=RuntimeError('database down')):
            with self.assertRaisesRegex(BackendUnavailable, "Principal resolver failed."):
                self._authentication_request(login)

    @ddt.data(
        ('client_id', 'other-client', "client_id"),
        ('scope', 'profile', "scope"),
        ('response_type', 'code', "response_type"),
        ('redirect_uri', 'https://attacker.example.com/', "redirect_uri"),
        ('nonce', '', "nonce"),
    )
    @ddt.unpack
    def test_validate_authentication_request(self, name, value, message):
        request = self._authentication_request(self._login())
        parameters = dict(request.parameters, **{name: value})

        with self.assertRaisesRegex(MalformedRequest, message):
            validate_authentication_request(self.platform, self.tool, parameters)
