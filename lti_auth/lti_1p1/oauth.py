"""
Utility functions for working with OAuth signatures.
"""

import base64
import hashlib
import logging
import urllib.parse

from oauthlib import oauth1
from oauthlib.oauth1.rfc5849 import CONTENT_TYPE_FORM_URLENCODED

from ..data import HMAC_SIGNATURE_METHODS
from ..exceptions import MalformedRequest, ReplayDetected, SignatureInvalid
from ..nonce import PlatformNonce

log = logging.getLogger(__name__)

BODY_HASH_ALGORITHMS = {
    'HMAC-SHA1': hashlib.sha1,
    'HMAC-SHA256': hashlib.sha256,
    'HMAC-SHA512': hashlib.sha512,
}

SIGNATURE_VERIFIERS = {
    'HMAC-SHA1': oauth1.rfc5849.signature.verify_hmac_sha1,
    'HMAC-SHA256': oauth1.rfc5849.signature.verify_hmac_sha256,
    'HMAC-SHA512': oauth1.rfc5849.signature.verify_hmac_sha512,
}


class SignedRequest:
    """
    Encapsulates request attributes needed when working
    with the `oauthlib.oauth1` API
    """
    def __init__(self, **kwargs):
        self.uri = kwargs.get('uri')
        self.http_method = kwargs.get('http_method')
        self.params = kwargs.get('params')
        self.oauth_params = kwargs.get('oauth_params')
        self.headers = kwargs.get('headers')
        self.body = kwargs.get('body')
        self.decoded_body = kwargs.get('decoded_body')
        self.signature = kwargs.get('signature')


def is_form_content_type(content_type):
    return bool(content_type) and CONTENT_TYPE_FORM_URLENCODED in content_type


def calculate_body_hash(body, signature_method='HMAC-SHA1'):
    """
    Return the base64 encoded ``oauth_body_hash`` of a request body.

    The digest algorithm follows the HMAC algorithm of the signature.
    """
    if isinstance(body, str):
        body = body.encode('utf-8')
    digest = BODY_HASH_ALGORITHMS.get(signature_method, hashlib.sha1)(body or b'').digest()
    return base64.b64encode(digest).decode('utf-8')


def collect_oauth_parameters(parameters, headers=None):
    """
    Return the oauth_* parameters of a request, from its form parameters and
    its Authorization header.
    """
    collected = {name: value for name, value in parameters.items() if name.startswith('oauth_')}
    authorization = (headers or {}).get('Authorization')
    if authorization and authorization.lower().startswith('oauth '):
        collected.update(oauth1.rfc5849.signature.collect_parameters(
            headers={'Authorization': authorization},
            exclude_oauth_signature=False,
        ))
    return collected


def _query_parameters(url):
    return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query, keep_blank_values=True))


def sign_form_parameters(key, secret, url, parameters, signature_method='HMAC-SHA1',
                         http_method='POST', nonce=None, timestamp=None):
    """
    Sign form parameters and return them with the oauth_* parameters added.

    Parameters which repeat the query string of the URL are left out, since
    they are already part of the signature base string through the URL.
    Existing oauth_* parameters are replaced.

    Raises:
        MalformedRequest if the URL cannot be signed.
    """
    query = _query_parameters(url)
    form_parameters = [
        (name, str(value)) for name, value in parameters.items()
        if not name.startswith('oauth_') and query.get(name) != value
    ]
    is_post = http_method.upper() == 'POST'
    client = oauth1.Client(
        client_key=str(key),
        client_secret=str(secret or ''),
        signature_method=signature_method,
        signature_type=oauth1.SIGNATURE_TYPE_BODY if is_post else oauth1.SIGNATURE_TYPE_QUERY,
        callback_uri='about:blank',
        nonce=nonce,
        timestamp=str(timestamp) if timestamp is not None else None,
    )
    try:
        if is_post:
            __, __, body = client.sign(
                str(url.strip()),
                http_method='POST',
                body=urllib.parse.urlencode(form_parameters),
                headers={'Content-Type': CONTENT_TYPE_FORM_URLENCODED},
            )
            signed = urllib.parse.parse_qsl(body, keep_blank_values=True)
        else:
            signed_uri, __, __ = client.sign(
                urllib.parse.urlunparse(urllib.parse.urlparse(url.strip())._replace(
                    query=urllib.parse.urlencode(list(query.items()) + form_parameters),
                )),
                http_method=http_method.upper(),
            )
            signed = [
                (name, value) for name, value in _query_parameters(signed_uri).items()
                if query.get(name) != value
            ]
    except ValueError as err:  # Scheme not in url.
        raise MalformedRequest("Failed to sign oauth request") from err

    return dict(signed)


def sign_service_request(key, secret, url, http_method='POST', body='', content_type=None,
                         signature_method='HMAC-SHA1', nonce=None, timestamp=None, body_hash=None):
    """
    Returns the header block for a signed service request.

    Non-form bodies are covered by an ``oauth_body_hash`` parameter. The block
    looks like::

        Authorization: OAuth oauth_nonce="80966668944732164491378916897", ...
        Content-Type: application/vnd.ims.lis.v2.result+json; charset=UTF-8
        Content-Length: 83

    with an ``Accept`` line in place of the content lines when the body is empty.
    """
    client = oauth1.Client(
        client_key=str(key),
        client_secret=str(secret or ''),
        signature_method=signature_method,
        nonce=nonce,
        timestamp=str(timestamp) if timestamp is not None else None,
    )
    if isinstance(body, bytes):
        body = body.decode('utf-8')
    body = body or ''
    mock_request = SignedRequest(
        uri=str(url.strip()),
        headers={},
        body="",
        decoded_body="",
        http_method=http_method.upper(),
    )
    mock_request.oauth_params = client.get_oauth_params(mock_request)
    if body and not is_form_content_type(content_type):
        mock_request.oauth_params.append(
            ('oauth_body_hash', body_hash or calculate_body_hash(body, signature_method))
        )
    try:
        sig = client.get_oauth_signature(mock_request)
    except ValueError as err:
        raise MalformedRequest("Failed to sign oauth request") from err
    mock_request.oauth_params.append(('oauth_signature', sig))

    __, headers, _ = client._render(mock_request)  # pylint: disable=protected-access
    lines = [f"Authorization: {headers['Authorization']}"]
    if body:
        lines.append(f"Content-Type: {content_type}; charset=UTF-8")
        lines.append(f"Content-Length: {len(body.encode('utf-8'))}")
    elif content_type:
        lines.append(f"Accept: {content_type}")
    return '\n'.join(lines)


class NonceRequestValidator(oauth1.RequestValidator):
    """
    oauthlib request validator for one known consumer.

    The nonce hook consumes a PlatformNonce, so a replayed request fails
    before its signature is checked.
    """
    enforce_ssl = False
    dummy_client = 'dummy_client'
    dummy_secret = 'dummy_secret'

    def __init__(self, principal, nonce_owner, nonce_store, config=None):
        super().__init__()
        self.principal = principal
        self.nonce_owner = nonce_owner
        self.nonce_store = nonce_store
        self.config = config
        self.replay_detected = False

    @property
    def allowed_signature_methods(self):
        return HMAC_SIGNATURE_METHODS

    def check_client_key(self, client_key):
        # any non-empty string is OK as a client key
        return bool(client_key)

    def check_nonce(self, nonce):
        return bool(nonce)

    def validate_client_key(self, client_key, request):
        return client_key == self.principal.key

    def validate_timestamp_and_nonce(self, client_key, timestamp, nonce,
                                     request, request_token=None, access_token=None):
        platform_nonce = PlatformNonce(self.nonce_owner, nonce, self.nonce_store, self.config)
        if not platform_nonce.consume():
            self.replay_detected = True
            return False
        return True

    def get_client_secret(self, client_key, request):
        if client_key != self.principal.key:
            return self.dummy_secret
        return self.principal.secret or ''


def verify_oauth_request(uri, http_method, body, headers, validator):
    """
    Verify the OAuth1 signature of a request with oauthlib.

    Non-form bodies must also match their ``oauth_body_hash``.

    Raises:
        ReplayDetected if the nonce was already used.
        SignatureInvalid if the signature or body hash does not match.
        MalformedRequest if the OAuth parameters are missing or invalid.
    """
    endpoint = oauth1.SignatureOnlyEndpoint(validator)
    valid, request = endpoint.validate_request(uri, http_method, body, headers)
    if validator.replay_detected:
        raise ReplayDetected()
    if request is None or 'signature' not in request.validator_log:
        raise MalformedRequest("Invalid OAuth parameters.")
    if not valid:
        log.error("[LTI] OAuth signature verification failed, for url:%s method:%s", uri, http_method)
        raise SignatureInvalid("OAuth signature verification has failed.")

    content_type = (headers or {}).get('Content-Type')
    if body and not is_form_content_type(content_type):
        expected = calculate_body_hash(body, request.signature_method)
        if request.oauth_params.get('oauth_body_hash') != expected:
            log.error(
                "[LTI] OAuth body hash verification failed, provided: %s, calculated: %s, for url: %s",
                request.oauth_params.get('oauth_body_hash'),
                expected,
                uri,
            )
            raise SignatureInvalid("OAuth body hash verification has failed.")
    return request


def verify_oauth_body_signature(request, lti_provider_secret, service_url):
    """
    Verify a service request from an LTI tool using OAuth body signing.

    Uses http://oauth.googlecode.com/svn/spec/ext/body_hash/1.0/oauth-bodyhash.html::

        This specification extends the OAuth signature to include integrity checks on HTTP request bodies
        with content types other than application/x-www-form-urlencoded.

    The signature is accepted for either the registered service URL or the URL
    the request was received on.

    Arguments:
        request (LtiRequest): the incoming request, with its headers and raw body
        lti_provider_secret (str): Secret key for the LTI tool
        service_url (str): URL that the request was made to

    Raises:
        SignatureInvalid if request is incorrect.
    """
    headers = {
        'Authorization': str(request.headers.get('Authorization')),
        'Content-Type': request.headers.get('Content-Type'),
    }

    oauth_params = oauth1.rfc5849.signature.collect_parameters(headers=headers, exclude_oauth_signature=False)
    oauth_headers = dict(oauth_params)
    oauth_signature = oauth_headers.pop('oauth_signature', None)
    signature_method = oauth_headers.get('oauth_signature_method', 'HMAC-SHA1')
    if oauth_signature is None or signature_method not in SIGNATURE_VERIFIERS:
        raise SignatureInvalid("OAuth signature verification has failed.")

    oauth_body_hash = calculate_body_hash(request.body, signature_method)
    if oauth_body_hash != oauth_headers.get('oauth_body_hash'):
        log.error(
            "OAuth body hash verification failed, provided: %s, "
            "calculated: %s, for url: %s, body is: %s",
            oauth_headers.get('oauth_body_hash'),
            oauth_body_hash,
            service_url,
            request.body
        )
        raise SignatureInvalid("OAuth body hash verification has failed.")

    verifier = SIGNATURE_VERIFIERS[signature_method]
    for url in (service_url, request.url):
        mock_request = SignedRequest(
            uri=str(urllib.parse.unquote(url)),
            http_method=str(request.method),
            params=list(oauth_headers.items()),
            signature=oauth_signature
        )
        if verifier(mock_request, lti_provider_secret):
            return True

    log.error(
        "OAuth signature verification failed, for "
        "headers:%s url:%s method:%s",
        oauth_headers,
        service_url,
        str(request.method)
    )
    raise SignatureInvalid("OAuth signature verification has failed.")
