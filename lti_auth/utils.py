"""
Utility functions for LTI authentication.
"""
import logging
import secrets
import string
from contextlib import contextmanager
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import jwt
from django.utils.html import format_html, format_html_join

from .exceptions import BackendUnavailable, ClaimValidationFailure, LtiAuthError, NoVerificationMaterial

log = logging.getLogger(__name__)

NONCE_CHARACTERS = string.ascii_letters + string.digits


def generate_nonce(length=32):
    """
    Return a random string usable as a nonce or state value.
    """
    return ''.join(secrets.choice(NONCE_CHARACTERS) for __ in range(length))


def fetch_jwks(url):
    """
    Download a JSON Web Key Set.

    Raises NoVerificationMaterial if the set cannot be retrieved.
    """
    try:
        return jwt.PyJWKClient(url).fetch_data()
    except (jwt.exceptions.PyJWKClientError, OSError, ValueError) as err:
        log.error("[LTI] Unable to fetch JWKS from %s: %s", url, err)
        raise NoVerificationMaterial(f"Unable to fetch JSON Web Keys from {url}") from err


@contextmanager
def backend_call(description):
    """
    Run a call into a nonce store, a login state store or a principal resolver.

    Errors raised by the backend itself are logged and raised as BackendUnavailable, so callers only
    handle LtiAuthError.
    """
    try:
        yield
    except LtiAuthError:
        raise
    except Exception as err:
        log.error("[LTI] %s failed: %s", description, err)
        raise BackendUnavailable(f"{description} failed.") from err


def add_query_parameters(url, parameters):
    """
    Append parameters to the query string of a URL.
    """
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query.extend(parameters.items())
    return urlunparse(parsed._replace(query=urlencode(query)))


def render_auto_submit_form(url, parameters, target=''):
    """
    Return an HTML page which posts the parameters to the URL as soon as it loads.
    """
    fields = format_html_join(
        '\n',
        '    <input type="hidden" name="{}" value="{}">',
        sorted(parameters.items()),
    )
    return format_html(
        '<!DOCTYPE html>\n<html>\n<head><title>LTI message</title></head>\n'
        '<body onload="document.forms[0].submit()">\n'
        '<form action="{}" method="post" target="{}" encType="application/x-www-form-urlencoded">\n'
        '{}\n'
        '  <noscript><input type="submit" value="Continue"></noscript>\n'
        '</form>\n</body>\n</html>\n',
        url,
        target,
        fields,
    )


def check_token_claim(token, claim_key, expected_value=None, invalid_claim_error_msg=None):
    """
    Checks that the claim with key claim_key appears in the token. Raises a ClaimValidationFailure exception if it
    does not, or if expected_value is given and the claim does not match it. The invalid_claim_error_msg argument
    replaces the generic message for a mismatch.
    """
    claim_value = token.get(claim_key)

    if claim_value is None:
        raise ClaimValidationFailure(f"Token is missing required {claim_key} claim.")
    if expected_value and claim_value != expected_value:
        msg = invalid_claim_error_msg if invalid_claim_error_msg else f"The claim {claim_key} value is invalid."
        raise ClaimValidationFailure(msg)
