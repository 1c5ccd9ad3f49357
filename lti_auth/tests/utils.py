"""
Test utils
"""
import time

from edx_django_utils.cache import TieredCache

from lti_auth.config import LtiAuthConfig
from lti_auth.data import LtiRequest, Platform, Principal, Tool
from lti_auth.lti_1p3.constants import (
    JWT_CLAIM_PREFIX,
    LTI_1P3_DEPLOYMENT_ID_CLAIM,
    LTI_1P3_MESSAGE_TYPE_CLAIM,
    LTI_1P3_VERSION_CLAIM,
)
from lti_auth.lti_1p3.jwt_client import JwtClient
from lti_auth.utils import generate_nonce

PLATFORM_PRIVATE_KEY = JwtClient.generate_key()
PLATFORM_PUBLIC_KEY = JwtClient.get_public_key(PLATFORM_PRIVATE_KEY)
TOOL_PRIVATE_KEY = JwtClient.generate_key()
TOOL_PUBLIC_KEY = JwtClient.get_public_key(TOOL_PRIVATE_KEY)
OTHER_PRIVATE_KEY = JwtClient.generate_key()
OTHER_PUBLIC_KEY = JwtClient.get_public_key(OTHER_PRIVATE_KEY)

ISS = 'https://platform.example.com'
CLIENT_ID = 'tool-client-id'
DEPLOYMENT_ID = 'deployment-1'
PLATFORM_KID = 'platform-kid'
AUTH_URL = 'https://platform.example.com/auth'
TOKEN_URL = 'https://platform.example.com/token'
JWKS_URL = 'https://platform.example.com/jwks'
LOGIN_URL = 'https://tool.example.com/login'
LAUNCH_URL = 'https://tool.example.com/launch'

CONSUMER_KEY = 'consumer-key'
CONSUMER_SECRET = 'consumer-secret'

RESOURCE_LINK_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/resource_link'
CUSTOM_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/custom'


def make_config(**kwargs):
    kwargs.setdefault('jwt_client', 'lti_auth.lti_1p3.pyjwt_client.PyJwtClient')
    return LtiAuthConfig(**kwargs)


def clear_caches():
    TieredCache.dangerous_clear_all_tiers()


def make_request(parameters=None, url=LAUNCH_URL, method='POST', body=None, headers=None):
    """
    Returns an LtiRequest with the given parameters.
    """
    return LtiRequest(
        url=url,
        method=method,
        parameters=dict(parameters or {}),
        body=body,
        headers=dict(headers or {}),
    )


def oauth1_platform():
    """
    A platform registration as known by a tool receiving OAuth1 messages (and
    as used by the platform to sign them).
    """
    return Platform(principal=Principal(key=CONSUMER_KEY, secret=CONSUMER_SECRET))


def oauth1_tool():
    return Tool(principal=Principal(key=CONSUMER_KEY, secret=CONSUMER_SECRET), message_url=LAUNCH_URL)


def platform_as_sender():
    """
    The LTI 1.3 platform, holding its private key.
    """
    return Platform(
        principal=Principal(
            key=ISS,
            rsa_key=PLATFORM_PRIVATE_KEY,
            kid=PLATFORM_KID,
            signature_method='RS256',
        ),
        platform_id=ISS,
        client_id=CLIENT_ID,
        deployment_id=DEPLOYMENT_ID,
        authentication_url=AUTH_URL,
        access_token_url=TOKEN_URL,
    )


def tool_registration():
    """
    The tool, as registered on the platform.
    """
    return Tool(
        principal=Principal(key=CLIENT_ID, rsa_key=TOOL_PUBLIC_KEY, signature_method='RS256'),
        initiate_login_url=LOGIN_URL,
        redirection_uris=[LAUNCH_URL],
        message_url=LAUNCH_URL,
    )


def tool_as_receiver():
    """
    The LTI 1.3 tool, holding its private key.
    """
    return Tool(
        principal=Principal(key=CLIENT_ID, rsa_key=TOOL_PRIVATE_KEY, signature_method='RS256'),
        initiate_login_url=LOGIN_URL,
        redirection_uris=[LAUNCH_URL],
        message_url=LAUNCH_URL,
    )


def platform_registration(rsa_key=PLATFORM_PUBLIC_KEY, jku=None):
    """
    The platform, as registered on the tool.
    """
    return Platform(
        principal=Principal(rsa_key=rsa_key, jku=jku, signature_method='RS256'),
        platform_id=ISS,
        client_id=CLIENT_ID,
        deployment_id=DEPLOYMENT_ID,
        authentication_url=AUTH_URL,
        access_token_url=TOKEN_URL,
    )


def launch_payload(**overrides):
    """
    Returns the payload of a valid LTI 1.3 resource link launch from the platform.
    """
    issued_at = int(time.time())
    payload = {
        'iss': ISS,
        'aud': [CLIENT_ID],
        'azp': CLIENT_ID,
        'iat': issued_at,
        'exp': issued_at + 60,
        'nonce': generate_nonce(),
        'sub': 'user-1',
        LTI_1P3_DEPLOYMENT_ID_CLAIM: DEPLOYMENT_ID,
        LTI_1P3_MESSAGE_TYPE_CLAIM: 'LtiResourceLinkRequest',
        LTI_1P3_VERSION_CLAIM: '1.3.0',
        RESOURCE_LINK_CLAIM: {'id': 'resource-link-1'},
    }
    payload.update(overrides)
    return payload
