"""
LTI 1.3 third party initiated login (OpenID Connect).

An LTI 1.3 launch involves three legs:

1. The platform stashes the message it wants to send and sends an initiate
   login request to the tool (``initiate_login``).
2. The tool answers with an authentication request to the platform, carrying
   a ``state`` value it remembers and a ``nonce`` (``authentication_request``).
3. The platform validates the request, rehydrates the stashed message and
   posts it as a signed ``id_token`` to the tool (``authentication_response``).
"""
import logging
from abc import ABC, abstractmethod
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from edx_django_utils.cache import TieredCache, get_cache_key

from ..config import LtiAuthConfig
from ..data import SignedMessage
from ..exceptions import MalformedRequest, UnknownPrincipal
from ..nonce import PlatformNonce
from ..utils import backend_call, generate_nonce
from .constants import LTI_1P3_OIDC_RESPONSE_MODE, LTI_1P3_OIDC_RESPONSE_TYPE, LTI_1P3_OIDC_SCOPE

log = logging.getLogger(__name__)

INITIATE_LOGIN_PARAMETERS = (
    'iss', 'target_link_uri', 'login_hint', 'lti_message_hint', 'client_id', 'lti_deployment_id',
)


class LoginStateStore(ABC):
    """
    Key/value store bridging the initiate login request and the
    authentication response on the platform.
    """

    @abstractmethod
    def save(self, key, data, timeout=None):
        pass

    @abstractmethod
    def load(self, key):
        """
        Return the data saved under the key, or None.
        """

    @abstractmethod
    def delete(self, key):
        pass


class CacheLoginStateStore(LoginStateStore):
    """
    Login state store on the tiered (request and django) cache.
    """

    @staticmethod
    def _cache_key(key):
        return get_cache_key(app='lti_auth', key_type='login_state', key=key)

    def save(self, key, data, timeout=None):
        TieredCache.set_all_tiers(self._cache_key(key), data, django_cache_timeout=timeout)

    def load(self, key):
        cached_data = TieredCache.get_cached_response(self._cache_key(key))
        if cached_data.is_found:
            return cached_data.value
        return None

    def delete(self, key):
        TieredCache.delete_all_tiers(self._cache_key(key))


def initiate_login(platform, tool, url, parameters, store, config=None, login_hint=None, lti_message_hint=None):
    """
    Stash a message and return the initiate login message for the tool.

    The message is saved under a fresh key which is sent to the tool as the
    ``lti_message_hint`` and comes back in the authentication request. The
    login hint defaults to the user id of the message.
    """
    config = config or LtiAuthConfig.from_settings()
    if not login_hint:
        login_hint = parameters.get('user_id') or 'Anonymous'

    state_key = generate_nonce()
    with backend_call("Login state store"):
        store.save(
            state_key,
            {
                'url': url,
                'parameters': dict(parameters),
                'login_hint': login_hint,
                'lti_message_hint': lti_message_hint,
            },
            timeout=config.login_state_timeout,
        )

    login_parameters = {
        'iss': platform.platform_id,
        'target_link_uri': url,
        'login_hint': login_hint,
        'lti_message_hint': state_key,
    }
    if platform.client_id:
        login_parameters['client_id'] = platform.client_id
    if platform.deployment_id:
        login_parameters['lti_deployment_id'] = platform.deployment_id

    login_url = tool.initiate_login_url if tool is not None and tool.initiate_login_url else url
    return SignedMessage(url=login_url, parameters=login_parameters, method='GET')


def _redirect_uri(request_url):
    """
    Strip the initiate login parameters from the query string of the URL the
    login request was received on.
    """
    parsed = urlparse(request_url)
    query = [
        (name, value) for name, value in parse_qsl(parsed.query, keep_blank_values=True)
        if name not in INITIATE_LOGIN_PARAMETERS
    ]
    return urlunparse(parsed._replace(query=urlencode(query)))


def authentication_request(login_parameters, resolver, nonce_store, config=None, redirect_uri=None):
    """
    Handle an initiate login request on the tool.

    Resolves the platform, remembers a ``state`` nonce for it, and returns the
    authentication request to send to the platform's authentication URL.

    Raises:
        MalformedRequest if the login request is incomplete.
        UnknownPrincipal if the platform is not registered.
    """
    config = config or LtiAuthConfig.from_settings()
    if not login_parameters.get('iss'):
        raise MalformedRequest("Missing iss parameter")
    if not login_parameters.get('login_hint'):
        raise MalformedRequest("Missing login_hint parameter")
    if not login_parameters.get('target_link_uri'):
        raise MalformedRequest("Missing target_link_uri parameter")

    with backend_call("Principal resolver"):
        platform = resolver.from_platform_id(
            login_parameters['iss'],
            login_parameters.get('client_id') or None,
            login_parameters.get('lti_deployment_id') or None,
        )
    if platform is None:
        raise UnknownPrincipal(f"Platform {login_parameters['iss']} is not registered.")
    if not platform.authentication_url:
        raise MalformedRequest("The platform has no authentication URL.")

    state = PlatformNonce(platform, generate_nonce(), nonce_store, config)
    if not state.save():
        raise MalformedRequest("Unable to generate a state value")

    parameters = {
        'client_id': platform.client_id,
        'login_hint': login_parameters['login_hint'],
        'nonce': generate_nonce(),
        'prompt': 'none',
        'redirect_uri': redirect_uri or _redirect_uri(login_parameters['target_link_uri']),
        'response_mode': LTI_1P3_OIDC_RESPONSE_MODE,
        'response_type': LTI_1P3_OIDC_RESPONSE_TYPE,
        'scope': LTI_1P3_OIDC_SCOPE,
        'state': state.value,
    }
    if login_parameters.get('lti_message_hint'):
        parameters['lti_message_hint'] = login_parameters['lti_message_hint']
    return SignedMessage(url=platform.authentication_url, parameters=parameters)


def validate_authentication_request(platform, tool, parameters):
    """
    Validates an authentication request to be answered with a launch.

    Raises MalformedRequest in case of validation failure.
    """
    for name in ('nonce', 'state', 'redirect_uri', 'login_hint'):
        if not parameters.get(name):
            raise MalformedRequest(f"Missing {name} parameter")
    if parameters.get('client_id') != platform.client_id:
        raise MalformedRequest("Invalid client_id parameter")
    if parameters.get('response_type') != LTI_1P3_OIDC_RESPONSE_TYPE:
        raise MalformedRequest("Invalid response_type parameter")
    if parameters.get('scope') != LTI_1P3_OIDC_SCOPE:
        raise MalformedRequest("Invalid scope parameter")
    if tool is not None and tool.redirection_uris and parameters['redirect_uri'] not in tool.redirection_uris:
        raise MalformedRequest("Unregistered redirect_uri")


def authentication_response(signer, parameters, store):
    """
    Answer an authentication request on the platform.

    ``signer`` is the SignatureSigner of the platform toward the tool. The
    stashed message is signed as an ``id_token`` bound to the request nonce
    and returned with the ``state`` for posting to the ``redirect_uri``. The
    stash is single use.

    Raises:
        MalformedRequest if the request is invalid or the stash has expired.
    """
    platform, tool = signer.sender, signer.counterpart
    validate_authentication_request(platform, tool, parameters)

    state_key = parameters.get('lti_message_hint')
    with backend_call("Login state store"):
        stash = store.load(state_key) if state_key else None
    if stash is None:
        log.warning("[LTI] No login state found for message hint %s", state_key)
        raise MalformedRequest("The login state has expired or is invalid.")
    if stash['login_hint'] != parameters['login_hint']:
        raise MalformedRequest("Invalid login_hint parameter")
    with backend_call("Login state store"):
        store.delete(state_key)

    id_token = signer.sign_jwt_message(stash['url'], stash['parameters'], nonce=parameters['nonce'])
    return SignedMessage(
        url=parameters['redirect_uri'],
        parameters={'id_token': id_token, 'state': parameters['state']},
    )
