"""
Checks applied to the flat parameters of a message once its signature has
been verified.

Hard checks raise an LtiAuthError. "Should" checks go through
``AuthenticationResult.should`` or ``check_value(ignore_invalid=True)``: they
fail the message in strict mode and are otherwise only reported as warnings.
"""
import logging

from attrs import define, field

from .exceptions import ConstraintViolation, MalformedRequest, UnsupportedMessageType
from .message_types import LtiMessageType, LtiVersion

log = logging.getLogger(__name__)

DOCUMENT_TARGETS = ('embed', 'frame', 'iframe', 'window', 'popup', 'overlay')
CONTENT_ITEM_DOCUMENT_TARGETS = DOCUMENT_TARGETS + ('none',)
BOOLEAN_VALUES = ('true', 'false')
CONTENT_ITEM_FLAGS = ('accept_unsigned', 'accept_multiple', 'accept_copy_advice', 'auto_create', 'can_confirm')

REQUIRED_PARAMETERS = {
    LtiMessageType.SUBMISSION_REVIEW: (
        ('custom_lineitem_url', "Missing line item URL."),
        ('for_user_id', "Missing for_user_id parameter."),
    ),
    LtiMessageType.TOOL_PROXY_REGISTRATION: (
        ('reg_key', "Missing reg_key parameter."),
        ('reg_password', "Missing reg_password parameter."),
        ('tc_profile_url', "Missing tc_profile_url parameter."),
        ('launch_presentation_return_url', "Missing launch_presentation_return_url parameter."),
    ),
}


def _to_message_types(value):
    if value is None:
        return None
    return tuple(
        item if isinstance(item, LtiMessageType) else LtiMessageType.from_value(item)
        for item in value
    )


@define
class ParameterConstraint:
    """
    Requirement on one incoming message parameter.

    * required: the parameter must have a non-blank value.
    * max_length: longest value accepted, if any.
    * message_types: message types the constraint applies to, all of them when None.
    """
    required = field(default=True)
    max_length = field(default=None)
    message_types = field(default=None, converter=_to_message_types)

    def applies_to(self, message_type):
        return self.message_types is None or message_type in self.message_types


def check_value(value, allowed, reason, result, ignore_invalid=False):
    """
    Check a value against a list of allowed values and return it in its
    canonical spelling.

    In lenient mode the lookup ignores case and a value which only differs in
    case is corrected with a warning. With ``ignore_invalid`` an unknown value
    is kept with a warning, unless in strict mode. ``reason`` is formatted with
    the value.

    Raises:
        ConstraintViolation for a value which is not allowed.
    """
    value = '' if value is None else str(value)
    if result.strict_mode:
        lookup = {item: item for item in allowed}
        key = value
    else:
        lookup = {item.lower(): item for item in allowed}
        key = value.lower()

    if key in lookup:
        canonical = lookup[key]
        if canonical != value:
            result.warn(reason.format(value) + f" [Changed to '{canonical}']")
        return canonical
    if ignore_invalid and not result.strict_mode:
        result.warn(reason.format(value) + " [Error ignored]")
        return value
    raise ConstraintViolation(reason.format(value))


def check_list(value, allowed, reason, result, ignore_invalid=False):
    """
    Check each element of a comma separated list with ``check_value``.
    """
    items = [item.strip() for item in value.split(',') if item.strip()]
    return ','.join(check_value(item, allowed, reason, result, ignore_invalid) for item in items)


def check_message_type(parameters, result):
    try:
        message_type = LtiMessageType.from_value(parameters.get('lti_message_type'))
    except UnsupportedMessageType:
        names = [item.value for item in LtiMessageType] + [item.lti_1p3_name for item in LtiMessageType]
        try:
            canonical = check_value(
                parameters.get('lti_message_type'),
                list(dict.fromkeys(names)),
                UnsupportedMessageType.message,
                result,
            )
        except ConstraintViolation as err:
            raise UnsupportedMessageType() from err
        message_type = LtiMessageType.from_value(canonical)
    parameters['lti_message_type'] = message_type.value
    return message_type


def check_version(parameters, result):
    value = check_value(
        parameters.get('lti_version'),
        [version.value for version in LtiVersion],
        "Invalid or missing lti_version parameter.",
        result,
    )
    parameters['lti_version'] = value
    return LtiVersion.from_value(value)


def _check_content_item_request(parameters, result, is_jwt):
    if not parameters.get('accept_media_types', '').strip():
        raise ConstraintViolation("Missing or invalid accept_media_types parameter.")
    if is_jwt and not parameters.get('accept_types', '').strip():
        raise ConstraintViolation("Missing or invalid accept_types parameter.")
    if not parameters.get('content_item_return_url', '').strip():
        raise ConstraintViolation("Missing content_item_return_url parameter.")

    targets = parameters.get('accept_presentation_document_targets', '')
    if result.should(targets.strip(), "Missing accept_presentation_document_targets parameter."):
        parameters['accept_presentation_document_targets'] = check_list(
            targets,
            CONTENT_ITEM_DOCUMENT_TARGETS,
            "Invalid value in accept_presentation_document_targets parameter: '{}'.",
            result,
            ignore_invalid=True,
        )

    for name in CONTENT_ITEM_FLAGS:
        if name in parameters:
            parameters[name] = check_value(
                parameters[name],
                BOOLEAN_VALUES,
                f"Invalid value for {name} parameter: '{{}}'.",
                result,
                ignore_invalid=True,
            )


def check_message(result, is_jwt=False):
    """
    Apply the structural checks of the message type to ``result.message_parameters``.

    Sets ``result.message_type`` and ``result.lti_version``; values corrected
    in lenient mode are written back to the parameters.
    """
    parameters = result.message_parameters
    message_type = check_message_type(parameters, result)
    result.message_type = message_type
    result.lti_version = check_version(parameters, result)

    if message_type == LtiMessageType.LAUNCH and not parameters.get('resource_link_id', '').strip():
        raise MalformedRequest("Missing resource link ID.")

    if message_type == LtiMessageType.CONTENT_ITEM_SELECTION_REQUEST:
        _check_content_item_request(parameters, result, is_jwt)
    elif parameters.get('launch_presentation_document_target'):
        parameters['launch_presentation_document_target'] = check_value(
            parameters['launch_presentation_document_target'],
            DOCUMENT_TARGETS,
            "Invalid value for launch_presentation_document_target parameter: '{}'.",
            result,
            ignore_invalid=True,
        )

    for name, reason in REQUIRED_PARAMETERS.get(message_type, ()):
        if not parameters.get(name, '').strip():
            raise ConstraintViolation(reason)
    return message_type


def check_constraints(parameters, constraints, message_type):
    """
    Apply caller configured ParameterConstraints.

    Raises:
        ConstraintViolation listing every failing parameter.
    """
    invalid = []
    for name, constraint in constraints.items():
        if not constraint.applies_to(message_type):
            continue
        value = str(parameters.get(name, ''))
        if constraint.required and not value.strip():
            invalid.append(f'{name} (missing)')
        elif constraint.max_length is not None and len(value) > constraint.max_length:
            invalid.append(f'{name} (too long)')
    if invalid:
        log.info("[LTI] Parameter constraints failed: %s", invalid)
        raise ConstraintViolation(f"Invalid parameter(s): {', '.join(invalid)}.")
