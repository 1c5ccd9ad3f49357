"""
Translation of role identifiers between the LTI 1.0 URN vocabulary, the
LTI 2.0 vocabulary and the LTI 1.3 vocabulary.

Each role is parsed into a (scope, principal, sub-role) triple and rendered
again in the target vocabulary. Scopes are context (course membership),
institution and system roles.
"""
from .message_types import LtiVersion

V1_CONTEXT_PREFIX = 'urn:lti:role:ims/lis/'
V1_INSTITUTION_PREFIX = 'urn:lti:instrole:ims/lis/'
V1_SYSTEM_PREFIX = 'urn:lti:sysrole:ims/lis/'

VOCABULARY_BASE = 'http://purl.imsglobal.org/vocab/lis/v2/'
MEMBERSHIP = VOCABULARY_BASE + 'membership'
PERSON_PREFIX = VOCABULARY_BASE + 'person#'
INSTITUTION_PREFIX = VOCABULARY_BASE + 'institution/person#'
SYSTEM_PREFIX = VOCABULARY_BASE + 'system/person#'

CONTEXT = 'context'
INSTITUTION = 'institution'
SYSTEM = 'system'

CONTEXT_ROLES = (
    'Administrator', 'ContentDeveloper', 'Instructor', 'Learner',
    'Manager', 'Member', 'Mentor', 'Officer',
)
INSTITUTION_ROLES = (
    'Administrator', 'Alumni', 'Faculty', 'Guest', 'Instructor', 'Learner', 'Member',
    'Mentor', 'None', 'Observer', 'Other', 'ProspectiveStudent', 'Staff', 'Student',
)
SYSTEM_ROLES = (
    'AccountAdmin', 'Administrator', 'Creator', 'None', 'SysAdmin', 'SysSupport', 'User',
)

TEACHING_ASSISTANT = 'TeachingAssistant'

URI_SCHEMES = ('urn:', 'http://', 'https://')


def _split_sub_role(name, separator):
    principal, _, sub_role = name.partition(separator)
    if not sub_role and principal == TEACHING_ASSISTANT:
        return 'Instructor', TEACHING_ASSISTANT
    return principal, sub_role or None


def _parse_role(role):
    """
    Return the (scope, principal, sub_role) triple of a role, or None if the
    role is not part of a known vocabulary.
    """
    if role.startswith(V1_CONTEXT_PREFIX):
        return (CONTEXT,) + _split_sub_role(role[len(V1_CONTEXT_PREFIX):], '/')
    if role.startswith(V1_INSTITUTION_PREFIX):
        return INSTITUTION, role[len(V1_INSTITUTION_PREFIX):], None
    if role.startswith(V1_SYSTEM_PREFIX):
        return SYSTEM, role[len(V1_SYSTEM_PREFIX):], None
    if role.startswith(MEMBERSHIP + '#'):
        return (CONTEXT,) + _split_sub_role(role[len(MEMBERSHIP) + 1:], '#')
    if role.startswith(MEMBERSHIP + '/'):
        return (CONTEXT,) + _split_sub_role(role[len(MEMBERSHIP) + 1:], '#')
    if role.startswith(INSTITUTION_PREFIX):
        return INSTITUTION, role[len(INSTITUTION_PREFIX):], None
    if role.startswith(SYSTEM_PREFIX):
        return SYSTEM, role[len(SYSTEM_PREFIX):], None
    if role.startswith(PERSON_PREFIX):
        name = role[len(PERSON_PREFIX):]
        if name in SYSTEM_ROLES and name not in INSTITUTION_ROLES:
            return SYSTEM, name, None
        return INSTITUTION, name, None
    if role.startswith(URI_SCHEMES):
        return None

    # Plain role name, always a context role
    separator = '#' if '#' in role else '/'
    principal, sub_role = _split_sub_role(role, separator)
    if principal not in CONTEXT_ROLES:
        return None
    return CONTEXT, principal, sub_role


def _render_role(scope, principal, sub_role, lti_version):
    if lti_version == LtiVersion.V1:
        if scope == INSTITUTION:
            return V1_INSTITUTION_PREFIX + principal
        if scope == SYSTEM:
            return V1_SYSTEM_PREFIX + principal
        if sub_role:
            return f'{V1_CONTEXT_PREFIX}{principal}/{sub_role}'
        return V1_CONTEXT_PREFIX + principal

    if scope == INSTITUTION:
        prefix = INSTITUTION_PREFIX if lti_version == LtiVersion.V1P3 else PERSON_PREFIX
        return prefix + principal
    if scope == SYSTEM:
        return SYSTEM_PREFIX + principal
    if sub_role:
        return f'{MEMBERSHIP}/{principal}#{sub_role}'
    return f'{MEMBERSHIP}#{principal}'


def parse_roles(roles, lti_version=LtiVersion.V1, add_principal_role=False):
    """
    Translate a list of roles into the vocabulary of an LTI version.

    Arguments:
        roles (str|list): roles as a list or a comma-separated string
        lti_version (LtiVersion): target vocabulary
        add_principal_role (bool): when translating to LTI 1.3, also emit the principal role of each sub-role

    A bare context role is dropped when a sub-role of the same principal is
    present, unless add_principal_role asks for the LTI 1.3 form. Unknown roles
    are kept only when they already are URIs; empty entries are dropped.
    """
    if isinstance(roles, str):
        roles = roles.split(',')
    roles = [role.strip() for role in roles if role and role.strip()]

    parsed = []
    for role in roles:
        triple = _parse_role(role)
        if triple is None:
            if role.startswith(URI_SCHEMES):
                parsed.append(role)
            continue
        parsed.append(triple)

    keep_principals = add_principal_role and lti_version == LtiVersion.V1P3
    principals_with_sub_roles = {
        item[1] for item in parsed
        if isinstance(item, tuple) and item[0] == CONTEXT and item[2]
    }

    translated = []
    for item in parsed:
        if not isinstance(item, tuple):
            translated.append(item)
            continue
        scope, principal, sub_role = item
        if scope == CONTEXT and not sub_role and principal in principals_with_sub_roles and not keep_principals:
            continue
        if scope == CONTEXT and sub_role and keep_principals:
            translated.append(_render_role(CONTEXT, principal, None, lti_version))
        translated.append(_render_role(scope, principal, sub_role, lti_version))

    # De-duplicate, keeping the first occurrence
    return list(dict.fromkeys(translated))


def has_role(roles, role):
    """
    Check whether a role is held, whichever vocabulary either side uses.
    """
    held = set(parse_roles(roles, LtiVersion.V1P3))
    wanted = parse_roles([role], LtiVersion.V1P3)
    return bool(wanted) and wanted[0] in held
