"""
LTI 1.3 Constants definition file

This includes claim names, OAuth2 scopes and the values used by the
client credentials grant and by deep linking type conversions.
"""

JWT_CLAIM_PREFIX = 'https://purl.imsglobal.org/spec/lti'

LTI_1P3_DEPLOYMENT_ID_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/deployment_id'
LTI_1P3_MESSAGE_TYPE_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/message_type'
LTI_1P3_VERSION_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/version'
LTI_1P3_TARGET_LINK_URI_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/target_link_uri'
LTI_1P3_CUSTOM_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/custom'
LTI_1P3_EXT_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/ext'
LTI_1P3_LTI1P1_CLAIM = f'{JWT_CLAIM_PREFIX}/claim/lti1p1'
BRIGHTSPACE_CLAIM = 'http://www.brightspace.com'

# Claims checked by the authenticator before the payload is mapped
LTI_1P3_STANDARD_CLAIMS = ('iss', 'aud', 'iat', 'exp', 'nonce')

LTI_1P3_ACCESS_TOKEN_REQUIRED_CLAIMS = (
    "grant_type",
    "client_assertion_type",
    "client_assertion",
    "scope",
)

CLIENT_ASSERTION_TYPE = 'urn:ietf:params:oauth:client-assertion-type:jwt-bearer'
CLIENT_CREDENTIALS_GRANT = 'client_credentials'

# Access tokens are valid for 3600 seconds (1h)
# https://www.imsglobal.org/spec/security/v1p0/#expires_in-values-and-renewing-the-access-token
ACCESS_TOKEN_LIFE = 3600

LTI_1P3_ACCESS_TOKEN_SCOPES = [
    # LTI-AGS Scopes
    'https://purl.imsglobal.org/spec/lti-ags/scope/lineitem.readonly',
    'https://purl.imsglobal.org/spec/lti-ags/scope/lineitem',
    'https://purl.imsglobal.org/spec/lti-ags/scope/result.readonly',
    'https://purl.imsglobal.org/spec/lti-ags/scope/score',

    # LTI-NRPS Scopes
    'https://purl.imsglobal.org/spec/lti-nrps/scope/contextmembership.readonly',

    # Course groups and tool settings
    'https://purl.imsglobal.org/spec/lti-gs/scope/contextgroup.readonly',
    'https://purl.imsglobal.org/spec/lti-ts/scope/toolsetting',

    # Assessment control
    'https://purl.imsglobal.org/spec/lti-ap/scope/control.all',
]

# Deep linking media types <-> LTI 1.3 content item types
LTI_LINK_MEDIA_TYPE = 'application/vnd.ims.lti.v1.ltilink'
LTI_ASSIGNMENT_MEDIA_TYPE = 'application/vnd.ims.lti.v1.ltiassignment'
TYPE_LTI_LINK = 'ltiResourceLink'
TYPE_LTI_ASSIGNMENT = 'ltiAssignment'

# Document targets with no LTI 1.3 equivalent
LTI_1P3_UNSUPPORTED_DOCUMENT_TARGETS = ('frame', 'popup', 'overlay', 'none')

LTI_1P3_OIDC_SCOPE = 'openid'
LTI_1P3_OIDC_RESPONSE_TYPE = 'id_token'
LTI_1P3_OIDC_RESPONSE_MODE = 'form_post'
