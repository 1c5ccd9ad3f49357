"""
LTI versions, message types and dispatch of authenticated messages to
application handlers.
"""
from enum import Enum

from .exceptions import UnsupportedMessageType


class LtiVersion(Enum):
    """ Values of the ``lti_version`` message parameter """
    V1 = 'LTI-1p0'
    V2 = 'LTI-2p0'
    V1P3 = '1.3.0'

    @classmethod
    def from_value(cls, value, default=None):
        for version in cls:
            if version.value == value:
                return version
        return default


class LtiMessageType(Enum):
    """
    Supported message types, named by their LTI 1.x ``lti_message_type`` value.

    LTI 1.3 names differ for some of them, see ``MESSAGE_TYPE_MAPPING``.
    """
    LAUNCH = 'basic-lti-launch-request'
    CONTENT_ITEM_SELECTION_REQUEST = 'ContentItemSelectionRequest'
    CONTENT_ITEM_SELECTION = 'ContentItemSelection'
    CONTENT_ITEM_UPDATE_REQUEST = 'ContentItemUpdateRequest'
    CONFIGURE_LAUNCH = 'ConfigureLaunchRequest'
    DASHBOARD = 'DashboardRequest'
    TOOL_PROXY_REGISTRATION = 'ToolProxyRegistrationRequest'
    TOOL_PROXY_REREGISTRATION = 'ToolProxyReregistrationRequest'
    SUBMISSION_REVIEW = 'LtiSubmissionReviewRequest'
    REPORT_REVIEW = 'LtiReportReviewRequest'
    START_PROCTORING = 'LtiStartProctoring'
    START_ASSESSMENT = 'LtiStartAssessment'
    END_ASSESSMENT = 'LtiEndAssessment'

    @property
    def lti_1p3_name(self):
        return MESSAGE_TYPE_MAPPING.get(self.value, self.value)

    @classmethod
    def from_value(cls, value):
        """
        Return the message type for either its LTI 1.x or its LTI 1.3 name.

        Raises UnsupportedMessageType for anything else.
        """
        for message_type in cls:
            if value in (message_type.value, message_type.lti_1p3_name):
                return message_type
        raise UnsupportedMessageType()


# LTI 1.x message type -> LTI 1.3 message type
MESSAGE_TYPE_MAPPING = {
    'basic-lti-launch-request': 'LtiResourceLinkRequest',
    'ContentItemSelectionRequest': 'LtiDeepLinkingRequest',
    'ContentItemSelection': 'LtiDeepLinkingResponse',
    'ContentItemUpdateRequest': 'LtiDeepLinkingUpdateRequest',
}

DEEP_LINKING_REQUEST_TYPES = (
    LtiMessageType.CONTENT_ITEM_SELECTION_REQUEST,
    LtiMessageType.CONTENT_ITEM_UPDATE_REQUEST,
)


class MessageHandler:
    """
    Receives authenticated messages, one method per message type.

    Applications subclass this and override the methods for the message types
    they accept. Message types without an override raise
    UnsupportedMessageType when dispatched.
    """
    handlers = {
        LtiMessageType.LAUNCH: 'on_launch',
        LtiMessageType.CONTENT_ITEM_SELECTION_REQUEST: 'on_content_item',
        LtiMessageType.CONTENT_ITEM_SELECTION: 'on_content_item_selection',
        LtiMessageType.CONTENT_ITEM_UPDATE_REQUEST: 'on_content_item_update',
        LtiMessageType.CONFIGURE_LAUNCH: 'on_configure',
        LtiMessageType.DASHBOARD: 'on_dashboard',
        LtiMessageType.TOOL_PROXY_REGISTRATION: 'on_register',
        LtiMessageType.TOOL_PROXY_REREGISTRATION: 'on_register',
        LtiMessageType.SUBMISSION_REVIEW: 'on_submission_review',
        LtiMessageType.REPORT_REVIEW: 'on_report_review',
        LtiMessageType.START_PROCTORING: 'on_proctoring',
        LtiMessageType.START_ASSESSMENT: 'on_proctoring',
        LtiMessageType.END_ASSESSMENT: 'on_proctoring',
    }

    def dispatch(self, result):
        """
        Call the handler method for the message type of an authenticated result.
        """
        message_type = result.message_type
        if message_type is None:
            message_type = LtiMessageType.from_value(result.message_parameters.get('lti_message_type'))
        handler = getattr(self, self.handlers[message_type], None)
        if handler is None:
            raise UnsupportedMessageType(f"No handler for {message_type.value} messages.")
        return handler(result)
