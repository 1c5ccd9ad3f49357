"""
Mapping between flat LTI 1.x message parameters and LTI 1.3 JWT claims.

The table below lists, for every legacy parameter with an LTI 1.3
equivalent, where the claim lives in the JWT payload and how its value is
coerced. Parameters prefixed with ``custom_``, ``ext_`` or ``lti1p1_`` are
carried in their own namespace claims, and claims which are not known at
all are kept in the ``unmapped_claims`` parameter so that a message can be
converted back without losing them.
"""
import copy
import json
import logging
from enum import Enum

from attrs import define, field, validators

from ..exceptions import ClaimValidationFailure
from ..message_types import MESSAGE_TYPE_MAPPING
from .constants import (
    BRIGHTSPACE_CLAIM,
    JWT_CLAIM_PREFIX,
    LTI_1P3_CUSTOM_CLAIM,
    LTI_1P3_EXT_CLAIM,
    LTI_1P3_LTI1P1_CLAIM,
    LTI_1P3_MESSAGE_TYPE_CLAIM,
    LTI_1P3_UNSUPPORTED_DOCUMENT_TARGETS,
    LTI_ASSIGNMENT_MEDIA_TYPE,
    LTI_LINK_MEDIA_TYPE,
    TYPE_LTI_ASSIGNMENT,
    TYPE_LTI_LINK,
)

log = logging.getLogger(__name__)

# Registered JWT claims belong to the token envelope, not to the message
JWT_ENVELOPE_CLAIMS = ('iss', 'aud', 'azp', 'iat', 'exp', 'nbf', 'nonce', 'jti')


class Coercion(Enum):
    """ How a parameter value is represented in its claim """
    STRING = 'string'
    ARRAY = 'array'
    OBJECT = 'object'
    BOOLEAN = 'boolean'
    INTEGER = 'integer'
    CONTENT_ITEMS = 'content-items'


@define(frozen=True)
class ClaimMapping:
    """
    Location and type of the claim carrying one legacy parameter.

    * legacy_name: LTI 1.x parameter name.
    * claim: claim name, or key within the group claim.
    * suffix: namespace of an LTI extension (``dl``, ``ags``, ...), used in the claim URI.
    * group: None for a top level claim without prefix, an empty tuple for a
      prefixed claim, otherwise the path segments of the enclosing claim.
    * coercion: value conversion.
    * message_type: LTI 1.3 message type this row is restricted to. Such rows
      take precedence over the general row for the same parameter.
    """
    legacy_name = field()
    claim = field()
    suffix = field(default='')
    group = field(default=())
    coercion = field(default=Coercion.STRING, validator=validators.instance_of(Coercion))
    message_type = field(default=None)

    @property
    def claim_path(self):
        """
        Keys leading to the claim value in the payload.
        """
        if self.group is None:
            return (self.claim,)
        namespace = JWT_CLAIM_PREFIX
        if self.suffix:
            namespace += f'-{self.suffix}'
        namespace += '/claim/'
        if not self.group:
            return (namespace + self.claim,)
        return (namespace + self.group[0],) + tuple(self.group[1:]) + (self.claim,)

    @property
    def claim_name(self):
        return '/'.join(self.claim_path)


def _top(legacy_name, claim, coercion=Coercion.STRING):
    return ClaimMapping(legacy_name, claim, group=None, coercion=coercion)


def _lti(legacy_name, claim, *group, suffix='', coercion=Coercion.STRING, message_type=None):
    return ClaimMapping(legacy_name, claim, suffix=suffix, group=group, coercion=coercion, message_type=message_type)


CLAIMS_MAPPING_TABLE = (
    # Core message claims
    _lti('lti_message_type', 'message_type'),
    _lti('lti_version', 'version'),
    _lti('deployment_id', 'deployment_id'),
    _lti('target_link_uri', 'target_link_uri'),
    _lti('roles', 'roles', coercion=Coercion.ARRAY),
    _lti('role_scope_mentor', 'role_scope_mentor', coercion=Coercion.ARRAY),
    _lti('resource_link_id', 'id', 'resource_link'),
    _lti('resource_link_title', 'title', 'resource_link'),
    _lti('resource_link_description', 'description', 'resource_link'),
    _lti('context_id', 'id', 'context'),
    _lti('context_type', 'type', 'context', coercion=Coercion.ARRAY),
    _lti('context_title', 'title', 'context'),
    _lti('context_label', 'label', 'context'),
    _lti('lis_person_sourcedid', 'person_sourcedid', 'lis'),
    _lti('lis_course_offering_sourcedid', 'course_offering_sourcedid', 'lis'),
    _lti('lis_course_section_sourcedid', 'course_section_sourcedid', 'lis'),
    _lti('launch_presentation_css_url', 'css_url', 'launch_presentation'),
    _lti('launch_presentation_document_target', 'document_target', 'launch_presentation'),
    _lti('launch_presentation_height', 'height', 'launch_presentation', coercion=Coercion.INTEGER),
    _lti('launch_presentation_width', 'width', 'launch_presentation', coercion=Coercion.INTEGER),
    _lti('launch_presentation_locale', 'locale', 'launch_presentation'),
    _lti('launch_presentation_return_url', 'return_url', 'launch_presentation'),
    _lti('tool_consumer_info_product_family_code', 'product_family_code', 'tool_platform'),
    _lti('tool_consumer_info_version', 'version', 'tool_platform'),
    _lti('tool_consumer_instance_guid', 'guid', 'tool_platform'),
    _lti('tool_consumer_instance_name', 'name', 'tool_platform'),
    _lti('tool_consumer_instance_description', 'description', 'tool_platform'),
    _lti('tool_consumer_instance_url', 'url', 'tool_platform'),
    _lti('tool_consumer_instance_contact_email', 'contact_email', 'tool_platform'),
    _lti('for_user_id', 'user_id', 'for_user'),

    # OpenID Connect user claims
    _top('user_id', 'sub'),
    _top('lis_person_name_given', 'given_name'),
    _top('lis_person_name_middle', 'middle_name'),
    _top('lis_person_name_family', 'family_name'),
    _top('lis_person_name_full', 'name'),
    _top('lis_person_contact_email_primary', 'email'),
    _top('user_image', 'picture'),

    # Deep linking
    _lti('accept_types', 'accept_types', 'deep_linking_settings', suffix='dl', coercion=Coercion.ARRAY),
    _lti('accept_media_types', 'accept_media_types', 'deep_linking_settings', suffix='dl'),
    _lti('accept_presentation_document_targets', 'accept_presentation_document_targets', 'deep_linking_settings',
         suffix='dl', coercion=Coercion.ARRAY),
    _lti('accept_multiple', 'accept_multiple', 'deep_linking_settings', suffix='dl', coercion=Coercion.BOOLEAN),
    _lti('accept_copy_advice', 'accept_copy_advice', 'deep_linking_settings', suffix='dl',
         coercion=Coercion.BOOLEAN),
    _lti('accept_unsigned', 'accept_unsigned', 'deep_linking_settings', suffix='dl', coercion=Coercion.BOOLEAN),
    _lti('auto_create', 'auto_create', 'deep_linking_settings', suffix='dl', coercion=Coercion.BOOLEAN),
    _lti('can_confirm', 'can_confirm', 'deep_linking_settings', suffix='dl', coercion=Coercion.BOOLEAN),
    _lti('content_item_return_url', 'deep_link_return_url', 'deep_linking_settings', suffix='dl'),
    _lti('title', 'title', 'deep_linking_settings', suffix='dl'),
    _lti('text', 'text', 'deep_linking_settings', suffix='dl'),
    _lti('data', 'data', 'deep_linking_settings', suffix='dl'),
    _lti('data', 'data', suffix='dl', message_type='LtiDeepLinkingResponse'),
    _lti('content_items', 'content_items', suffix='dl', coercion=Coercion.CONTENT_ITEMS),
    _lti('lti_msg', 'msg', suffix='dl'),
    _lti('lti_log', 'log', suffix='dl'),
    _lti('lti_errormsg', 'errormsg', suffix='dl'),
    _lti('lti_errorlog', 'errorlog', suffix='dl'),

    # Names and role provisioning service
    _lti('custom_context_memberships_v2_url', 'context_memberships_url', 'namesroleservice', suffix='nrps'),
    _lti('custom_nrps_versions', 'service_versions', 'namesroleservice', suffix='nrps', coercion=Coercion.ARRAY),

    # Assignment and grade services
    _lti('custom_lineitems_url', 'lineitems', 'endpoint', suffix='ags'),
    _lti('custom_lineitem_url', 'lineitem', 'endpoint', suffix='ags'),
    _lti('custom_ags_scopes', 'scope', 'endpoint', suffix='ags', coercion=Coercion.ARRAY),

    # Course groups service
    _lti('custom_context_groups_url', 'context_groups_url', 'groupsservice', suffix='gs'),
    _lti('custom_context_group_sets_url', 'context_group_sets_url', 'groupsservice', suffix='gs'),
    _lti('custom_gs_scopes', 'scope', 'groupsservice', suffix='gs', coercion=Coercion.ARRAY),
    _lti('custom_gs_versions', 'service_versions', 'groupsservice', suffix='gs', coercion=Coercion.ARRAY),

    # Basic outcomes (LTI 1.1 grade passback)
    _lti('lis_outcome_service_url', 'lis_outcome_service_url', 'basicoutcome', suffix='bo'),
    _lti('lis_result_sourcedid', 'lis_result_sourcedid', 'basicoutcome', suffix='bo'),

    # Proctoring
    _lti('custom_ap_attempt_number', 'attempt_number', suffix='ap', coercion=Coercion.INTEGER),
    _lti('custom_ap_start_assessment_url', 'start_assessment_url', suffix='ap'),
    _lti('custom_ap_session_data', 'session_data', suffix='ap'),
    _lti('custom_ap_verified_user', 'verified_user', suffix='ap', coercion=Coercion.OBJECT),
    _lti('custom_ap_end_assessment_return', 'end_assessment_return', suffix='ap', coercion=Coercion.BOOLEAN),
    _lti('custom_ap_acs_url', 'assessment_control_url', 'acs', suffix='ap'),
    _lti('custom_ap_acs_actions', 'actions', 'acs', suffix='ap', coercion=Coercion.ARRAY),
)


@define
class ClaimsTranslation:
    """
    Parameters read from a JWT payload, with the problems found on the way.
    """
    parameters = field(factory=dict)
    warnings = field(factory=list)
    errors = field(factory=list)


def get_mapping(legacy_name, message_type=None):
    """
    Return the table row for a parameter, preferring a row specific to the
    (LTI 1.3) message type.
    """
    general = None
    for mapping in CLAIMS_MAPPING_TABLE:
        if mapping.legacy_name != legacy_name:
            continue
        if mapping.message_type is None:
            general = mapping
        elif mapping.message_type == message_type:
            return mapping
    return general


def get_mappings(message_type=None):
    """
    Return the rows in force for a message type, one per legacy parameter.
    """
    names = dict.fromkeys(mapping.legacy_name for mapping in CLAIMS_MAPPING_TABLE)
    return [get_mapping(name, message_type) for name in names]


def _split(value):
    return [item.strip() for item in value.split(',') if item.strip()]


def _not_a_string(claim_name, value, strict_mode, warnings):
    """
    Stringify a non-string claim value, or reject it in strict mode.
    """
    message = f"Value of claim '{claim_name}' is not a string: '{value}'"
    if strict_mode:
        raise ClaimValidationFailure(message)
    if warnings is not None:
        warnings.append(message)
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def parameter_to_claim_value(mapping, value):
    """
    Convert a parameter value into the value of its claim.
    """
    coercion = mapping.coercion
    if coercion == Coercion.ARRAY:
        items = value if isinstance(value, list) else _split(value)
        return sorted(items)
    if coercion == Coercion.OBJECT:
        if isinstance(value, dict):
            return dict(sorted(value.items()))
        pairs = (item.partition('=') for item in _split(value))
        return {key.strip(): item.strip() for key, __, item in sorted(pairs)}
    if coercion == Coercion.BOOLEAN:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() == 'true'
    if coercion == Coercion.INTEGER:
        try:
            return int(value)
        except (TypeError, ValueError) as err:
            raise ClaimValidationFailure(f"'{mapping.legacy_name}' parameter must be an integer") from err
    if coercion == Coercion.CONTENT_ITEMS:
        items = value
        if isinstance(value, str):
            try:
                items = json.loads(value) if value else []
            except ValueError as err:
                raise ClaimValidationFailure(f"'{mapping.legacy_name}' parameter must be JSON") from err
        if isinstance(items, dict):
            items = items.get('@graph', [items])
        return items
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def claim_value_to_parameter(mapping, value, strict_mode=False, warnings=None):
    """
    Convert a claim value into its parameter value.

    Raises ClaimValidationFailure when the value has the wrong type, or when a
    coercible mismatch is found in strict mode. Coercions made in lenient mode
    are reported through ``warnings``.
    """
    claim_name = mapping.claim_name
    coercion = mapping.coercion
    if coercion == Coercion.ARRAY:
        if not isinstance(value, list):
            raise ClaimValidationFailure(f"'{claim_name}' claim must be an array")
        return ','.join(str(item) for item in value)
    if coercion == Coercion.OBJECT:
        if not isinstance(value, dict):
            raise ClaimValidationFailure(f"'{claim_name}' claim must be an object")
        return ','.join(f'{key}={item}' for key, item in value.items())
    if coercion == Coercion.BOOLEAN:
        if isinstance(value, bool):
            return 'true' if value else 'false'
        if isinstance(value, str) and value.lower() in ('true', 'false'):
            message = f"'{claim_name}' claim must be a boolean"
            if strict_mode:
                raise ClaimValidationFailure(message)
            if warnings is not None:
                warnings.append(message)
            return value.lower()
        raise ClaimValidationFailure(f"'{claim_name}' claim must be a boolean")
    if coercion == Coercion.INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and value.strip().lstrip('-').isdigit():
            message = f"'{claim_name}' claim must be an integer"
            if strict_mode:
                raise ClaimValidationFailure(message)
            if warnings is not None:
                warnings.append(message)
            return str(int(value))
        raise ClaimValidationFailure(f"'{claim_name}' claim must be an integer")
    if coercion == Coercion.CONTENT_ITEMS:
        if not isinstance(value, (list, dict)):
            raise ClaimValidationFailure(f"'{claim_name}' claim must be an array")
        return json.dumps(value)
    if isinstance(value, str):
        return value
    return _not_a_string(claim_name, value, strict_mode, warnings)


def _pop_path(payload, path):
    """
    Remove and return the value at a path of keys, as (found, value).
    """
    node = payload
    for key in path[:-1]:
        node = node.get(key) if isinstance(node, dict) else None
        if not isinstance(node, dict):
            return False, None
    if path[-1] not in node:
        return False, None
    return True, node.pop(path[-1])


def _set_path(claims, path, value):
    node = claims
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def _prune(payload):
    """
    Drop groups emptied by the mapping.
    """
    for name in list(payload):
        value = payload[name]
        if isinstance(value, dict):
            _prune(value)
            if not value:
                del payload[name]


def _media_types_from_types(parameters):
    types = _split(parameters.get('accept_types', ''))
    media_types = _split(parameters.get('accept_media_types', ''))
    if TYPE_LTI_LINK in types:
        media_types.append(LTI_LINK_MEDIA_TYPE)
    if TYPE_LTI_ASSIGNMENT in types:
        media_types.append(LTI_ASSIGNMENT_MEDIA_TYPE)
    if 'html' in types and '*/*' not in media_types:
        media_types.append('text/html')
    if 'image' in types and '*/*' not in media_types:
        media_types.append('image/*')
    return ','.join(dict.fromkeys(media_types))


def _types_from_media_types(media_types):
    """
    Return LTI 1.3 content item types for LTI 1.x media types, and the media
    types left once LTI link types are removed.
    """
    types = []
    remaining = []
    for media_type in media_types:
        if media_type == LTI_LINK_MEDIA_TYPE:
            types.append(TYPE_LTI_LINK)
            continue
        if media_type == LTI_ASSIGNMENT_MEDIA_TYPE:
            types.append(TYPE_LTI_ASSIGNMENT)
            continue
        remaining.append(media_type)
        if media_type.startswith('image/'):
            types.extend(['image', 'link', 'file'])
        elif media_type == 'text/html':
            types.extend(['html', 'link', 'file'])
        elif media_type == '*/*':
            types.extend(['html', 'image', 'file', 'link'])
        else:
            types.append('file')
    return list(dict.fromkeys(types)), remaining


def _namespace_value(claim_name, value, strict_mode, translation):
    if isinstance(value, str):
        return value
    try:
        return _not_a_string(claim_name, value, strict_mode, translation.warnings)
    except ClaimValidationFailure as err:
        translation.errors.append(str(err))
        return None


def claims_to_parameters(payload, strict_mode=False):
    """
    Convert a JWT payload into flat LTI 1.x parameters.

    Returns a ClaimsTranslation; its ``errors`` are fatal to the message and
    its ``warnings`` describe values coerced in lenient mode.
    """
    remaining = copy.deepcopy(payload)
    translation = ClaimsTranslation()
    parameters = translation.parameters
    message_type = payload.get(LTI_1P3_MESSAGE_TYPE_CLAIM)

    for mapping in get_mappings(message_type):
        found, value = _pop_path(remaining, mapping.claim_path)
        if not found or value is None:
            continue
        try:
            parameters[mapping.legacy_name] = claim_value_to_parameter(
                mapping, value, strict_mode, translation.warnings,
            )
        except ClaimValidationFailure as err:
            translation.errors.append(str(err))

    legacy_message_types = {value: key for key, value in MESSAGE_TYPE_MAPPING.items()}
    if parameters.get('lti_message_type') in legacy_message_types:
        parameters['lti_message_type'] = legacy_message_types[parameters['lti_message_type']]

    if parameters.get('accept_types'):
        parameters['accept_media_types'] = _media_types_from_types(parameters)

    for claim_name, prefix in ((LTI_1P3_CUSTOM_CLAIM, 'custom_'), (LTI_1P3_EXT_CLAIM, 'ext_')):
        if claim_name not in remaining:
            continue
        group = remaining.pop(claim_name)
        if not isinstance(group, dict):
            translation.errors.append(f"'{claim_name}' claim must be an object")
            continue
        for key, value in group.items():
            value = _namespace_value(f'{claim_name}/{key}', value, strict_mode, translation)
            if value is not None:
                parameters[f'{prefix}{key}'] = value

    if LTI_1P3_LTI1P1_CLAIM in remaining:
        group = remaining.pop(LTI_1P3_LTI1P1_CLAIM)
        if not isinstance(group, dict):
            translation.errors.append(f"'{LTI_1P3_LTI1P1_CLAIM}' claim must be an object")
        else:
            for key, value in group.items():
                if value is None:
                    value = ''
                elif isinstance(value, (dict, list)):
                    value = json.dumps(value)
                parameters[f'lti1p1_{key}'] = str(value)

    brightspace = remaining.get(BRIGHTSPACE_CLAIM)
    if isinstance(brightspace, dict) and brightspace.get('username'):
        parameters['ext_d2l_username'] = str(brightspace.pop('username'))

    for claim_name in JWT_ENVELOPE_CLAIMS:
        remaining.pop(claim_name, None)
    _prune(remaining)
    if remaining:
        parameters['unmapped_claims'] = json.dumps(remaining)

    return translation


def fully_qualify_claim(claim, value):
    """
    Flatten a grouped claim into ``group/key`` names.
    """
    if not isinstance(value, dict) or not value:
        return {claim: value}
    claims = {}
    for key, item in value.items():
        claims.update(fully_qualify_claim(f'{claim}/{key}', item))
    return claims


def parameters_to_claims(parameters, fully_qualified=False):
    """
    Convert flat LTI 1.x parameters into a JWT payload.

    Parameters without a claim are dropped; ``unmapped_claims`` is merged back
    into the payload.
    """
    parameters = dict(parameters)
    message_type = parameters.get('lti_message_type')
    if message_type:
        message_type = MESSAGE_TYPE_MAPPING.get(message_type, message_type)
        parameters['lti_message_type'] = message_type

    media_types = _split(parameters.get('accept_media_types', ''))
    if media_types:
        if parameters.get('accept_types'):
            media_types = [
                media_type for media_type in media_types
                if not media_type.startswith('application/vnd.ims.lti.')
            ]
        else:
            types, media_types = _types_from_media_types(media_types)
            parameters['accept_types'] = ','.join(types)
        parameters['accept_media_types'] = ','.join(media_types)

    if parameters.get('accept_presentation_document_targets'):
        targets = [
            target for target in _split(parameters['accept_presentation_document_targets'])
            if target not in LTI_1P3_UNSUPPORTED_DOCUMENT_TARGETS
        ]
        parameters['accept_presentation_document_targets'] = ','.join(dict.fromkeys(targets))

    claims = {}
    if parameters.get('oauth_consumer_key'):
        claims['aud'] = [parameters['oauth_consumer_key']]

    for name, value in parameters.items():
        mapping = get_mapping(name, message_type)
        if mapping is not None:
            _set_path(claims, mapping.claim_path, parameter_to_claim_value(mapping, value))
        elif name.startswith('custom_'):
            _set_path(claims, (LTI_1P3_CUSTOM_CLAIM, name[len('custom_'):]), value)
        elif name == 'ext_d2l_username':
            _set_path(claims, (BRIGHTSPACE_CLAIM, 'username'), value)
        elif name.startswith('ext_'):
            _set_path(claims, (LTI_1P3_EXT_CLAIM, name[len('ext_'):]), value)
        elif name.startswith('lti1p1_'):
            _set_path(claims, (LTI_1P3_LTI1P1_CLAIM, name[len('lti1p1_'):]), _lti1p1_claim_value(value))

    if parameters.get('unmapped_claims'):
        try:
            unmapped = json.loads(parameters['unmapped_claims'])
        except ValueError:
            log.warning("[LTI] Ignoring unmapped_claims parameter which is not valid JSON")
            unmapped = {}
        for claim, value in unmapped.items():
            if isinstance(value, dict) and isinstance(claims.get(claim), dict):
                for key, item in value.items():
                    claims[claim].setdefault(key, item)
            else:
                claims.setdefault(claim, value)

    if fully_qualified:
        qualified = {}
        for claim, value in claims.items():
            qualified.update(fully_qualify_claim(claim, value))
        return qualified
    return claims


def _lti1p1_claim_value(value):
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value
