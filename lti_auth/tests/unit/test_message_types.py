"""
Unit tests for message types and handler dispatch
"""
from unittest.mock import Mock

import ddt
from django.test.testcases import TestCase

from lti_auth.data import AuthenticationResult
from lti_auth.exceptions import UnsupportedMessageType
from lti_auth.message_types import LtiMessageType, LtiVersion, MessageHandler


class LaunchHandler(MessageHandler):
    """
    Handler accepting launches only.
    """

    def on_launch(self, result):
        return ('launch', result.message_parameters['resource_link_id'])


@ddt.ddt
class TestLtiMessageType(TestCase):
    """
    Unit tests for LtiMessageType
    """

    @ddt.data(
        ('basic-lti-launch-request', LtiMessageType.LAUNCH),
        ('LtiResourceLinkRequest', LtiMessageType.LAUNCH),
        ('LtiDeepLinkingRequest', LtiMessageType.CONTENT_ITEM_SELECTION_REQUEST),
        ('LtiDeepLinkingResponse', LtiMessageType.CONTENT_ITEM_SELECTION),
        ('LtiSubmissionReviewRequest', LtiMessageType.SUBMISSION_REVIEW),
        ('LtiStartProctoring', LtiMessageType.START_PROCTORING),
    )
    @ddt.unpack
    def test_from_value(self, value, expected):
        self.assertEqual(LtiMessageType.from_value(value), expected)

    @ddt.data(None, '', 'unknown-request')
    def test_from_value_unsupported(self, value):
        with self.assertRaises(UnsupportedMessageType):
            LtiMessageType.from_value(value)

    def test_lti_1p3_name(self):
        self.assertEqual(LtiMessageType.CONTENT_ITEM_UPDATE_REQUEST.lti_1p3_name, 'LtiDeepLinkingUpdateRequest')
        self.assertEqual(LtiMessageType.DASHBOARD.lti_1p3_name, 'DashboardRequest')

    def test_version_from_value(self):
        self.assertEqual(LtiVersion.from_value('1.3.0'), LtiVersion.V1P3)
        self.assertIsNone(LtiVersion.from_value('LTI-3p0'))


class TestMessageHandler(TestCase):
    """
    Unit tests for MessageHandler dispatch
    """

    def test_dispatch(self):
        result = AuthenticationResult(
            message_parameters={'lti_message_type': 'basic-lti-launch-request', 'resource_link_id': 'rl'},
        )
        self.assertEqual(LaunchHandler().dispatch(result), ('launch', 'rl'))

    def test_dispatch_uses_message_type(self):
        handler = LaunchHandler()
        handler.on_dashboard = Mock(return_value='dashboard')
        result = AuthenticationResult(message_type=LtiMessageType.DASHBOARD)

        self.assertEqual(handler.dispatch(result), 'dashboard')
        handler.on_dashboard.assert_called_once_with(result)

    def test_dispatch_without_handler(self):
        result = AuthenticationResult(message_type=LtiMessageType.CONTENT_ITEM_SELECTION_REQUEST)
        with self.assertRaises(UnsupportedMessageType):
            LaunchHandler().dispatch(result)
