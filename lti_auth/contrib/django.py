"""
Glue between Django views and the authenticator and signer.
"""
import logging

from django.http import HttpResponse, HttpResponseBadRequest, HttpResponseRedirect
from django.utils.html import format_html

from ..data import LtiRequest
from ..message_types import DEEP_LINKING_REQUEST_TYPES, LtiMessageType
from ..utils import add_query_parameters, render_auto_submit_form

log = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Sorry, there was an error connecting you to the application."


def lti_request_from_django(request):
    """
    Build an LtiRequest from a Django HttpRequest.

    Query string and form parameters are merged, form parameters taking precedence.
    """
    # The raw body must be read before the form is parsed
    body = request.body.decode('utf-8') if request.body else None
    parameters = request.GET.dict()
    parameters.update(request.POST.dict())
    headers = {}
    if request.headers.get('Authorization'):
        headers['Authorization'] = request.headers['Authorization']
    if request.META.get('CONTENT_TYPE'):
        headers['Content-Type'] = request.META['CONTENT_TYPE']
    return LtiRequest(
        url=request.build_absolute_uri(),
        method=request.method,
        parameters=parameters,
        body=body,
        headers=headers,
    )


def signed_message_response(signed, target=''):
    """
    Return the response delivering a SignedMessage through the user agent.

    GET messages are redirects; POST messages are auto-submitted forms.
    """
    if not signed.ok:
        return HttpResponseBadRequest(format_html("<p>{}</p>", signed.reason))
    if signed.method == 'GET':
        return HttpResponseRedirect(add_query_parameters(signed.url, signed.parameters))
    return HttpResponse(render_auto_submit_form(signed.url, signed.parameters, target))


def error_response(result, signer=None):
    """
    Return the response reporting a failed authentication.

    * Deep linking requests get a signed content item response with the
      error, when a signer toward the platform is given.
    * Messages with a return URL are redirected to it with ``lti_errormsg``
      and ``lti_errorlog``.
    * Otherwise a 400 page shows the reason.
    """
    return_url = result.return_url
    error_parameters = {
        'lti_errormsg': DEFAULT_ERROR_MESSAGE,
        'lti_errorlog': result.reason or '',
    }
    if return_url and signer is not None and result.message_type in DEEP_LINKING_REQUEST_TYPES:
        parameters = dict(error_parameters)
        if result.message_parameters.get('data'):
            parameters['data'] = result.message_parameters['data']
        signed = signer.sign_message(
            return_url,
            LtiMessageType.CONTENT_ITEM_SELECTION.value,
            result.lti_version,
            parameters,
        )
        if signed.ok:
            return signed_message_response(signed)
        log.error("[LTI] Unable to sign the error response to %s: %s", return_url, signed.reason)
    elif return_url:
        return HttpResponseRedirect(add_query_parameters(return_url, error_parameters))

    return HttpResponseBadRequest(format_html(
        "<!DOCTYPE html>\n<html>\n<head><title>LTI error</title></head>\n"
        "<body><h1>{}</h1><p>{}</p></body>\n</html>\n",
        DEFAULT_ERROR_MESSAGE,
        result.reason,
    ))


def send_message_response(signer, url, message_type, parameters=None, target='', **kwargs):
    """
    Sign a message and return the response delivering it.
    """
    signed = signer.sign_message(url, message_type, parameters=parameters, **kwargs)
    return signed_message_response(signed, target)
