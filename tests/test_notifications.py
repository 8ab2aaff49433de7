"""
Tests for notification payloads and the email dispatcher
"""
from unittest.mock import MagicMock

import pytest
import requests

from consultation_queue.errors import ValidationError
from consultation_queue.notifications import (
    ApprovalNotification,
    DeclineNotification,
    Deferred,
    EmailDispatcher,
    PositionUpdateNotification,
    Sent,
    YourTurnNotification,
    build_notification,
    estimated_time,
)


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def email_dispatcher(session):
    return EmailDispatcher(url='https://functions.example.com/send-email', token='secret', session=session)


@pytest.mark.unit
class TestEstimatedTime:

    @pytest.mark.parametrize('position', [None, 0, -1, 1])
    def test_ready_now(self, position):
        assert estimated_time(position, 12) == 'Ready now'

    @pytest.mark.parametrize('position,expected', [
        (2, '12 minutes'),
        (5, '48 minutes'),
        (6, '1 hour'),
        (7, '1 hour 12 minutes'),
        (11, '2 hours'),
        (12, '2 hours 12 minutes'),
    ])
    def test_twelve_minutes_per_person_ahead(self, position, expected):
        assert estimated_time(position, 12) == expected

    def test_uses_configured_rate(self):
        assert estimated_time(3, 10) == '20 minutes'


@pytest.mark.unit
class TestNotificationVariants:

    def test_approval_payload(self):
        payload = ApprovalNotification('jane@x.com', 'Jane', 'Doe', position=3, note='prayer').payload(12)
        assert payload == {
            'to': 'jane@x.com',
            'name': 'Jane',
            'surname': 'Doe',
            'type': 'approval',
            'queuePosition': 3,
            'estimatedTime': '24 minutes',
            'reason': 'prayer',
        }

    def test_decline_carries_reason(self):
        payload = DeclineNotification('jane@x.com', 'Jane', 'Doe', decline_reason='Office closed').payload()
        assert payload['type'] == 'decline'
        assert payload['reason'] == 'Office closed'
        assert payload['queuePosition'] is None
        assert payload['estimatedTime'] == 'Ready now'

    def test_decline_requires_reason(self):
        with pytest.raises(ValidationError):
            DeclineNotification('jane@x.com', 'Jane', 'Doe', decline_reason='')

    def test_position_update_requires_position(self):
        with pytest.raises(ValidationError):
            PositionUpdateNotification('jane@x.com', 'Jane', 'Doe')

    def test_your_turn_is_ready_now(self):
        payload = YourTurnNotification('jane@x.com', 'Jane', 'Doe').payload()
        assert payload['queuePosition'] == 1
        assert payload['estimatedTime'] == 'Ready now'

    def test_recipient_required(self):
        with pytest.raises(ValidationError) as exc:
            YourTurnNotification('', 'Jane', 'Doe')
        assert exc.value.field == 'to'

    def test_build_from_context(self):
        notification = build_notification('jane@x.com', 'Jane', 'Doe', 'position_update', {'queue_position': 2})
        assert isinstance(notification, PositionUpdateNotification)
        assert notification.position == 2

    def test_build_unknown_type(self):
        with pytest.raises(ValidationError):
            build_notification('jane@x.com', 'Jane', 'Doe', 'reminder')


@pytest.mark.unit
class TestEmailDispatcher:

    def test_sends_bearer_authenticated_json(self, email_dispatcher, session):
        session.post.return_value = make_response(200, {'success': True, 'emailId': 're_123'})

        result = email_dispatcher.send(PositionUpdateNotification('jane@x.com', 'Jane', 'Doe', position=2))

        assert result == Sent(email_id='re_123')
        assert result.success and not result.fallback
        assert session.headers['Authorization'] == 'Bearer secret'
        args, kwargs = session.post.call_args
        assert args[0] == 'https://functions.example.com/send-email'
        assert kwargs['json']['type'] == 'position_update'
        assert kwargs['json']['queuePosition'] == 2
        assert kwargs['timeout'] == email_dispatcher.timeout

    def test_network_error_is_deferred(self, email_dispatcher, session):
        session.post.side_effect = requests.exceptions.ConnectionError('connection refused')

        result = email_dispatcher.send(YourTurnNotification('jane@x.com', 'Jane', 'Doe'))

        assert isinstance(result, Deferred)
        assert result.success is True
        assert result.fallback is True
        assert 'connection refused' in result.reason

    def test_timeout_is_deferred(self, email_dispatcher, session):
        session.post.side_effect = requests.exceptions.Timeout()
        assert isinstance(email_dispatcher.send(YourTurnNotification('jane@x.com', 'Jane', 'Doe')), Deferred)

    def test_error_status_is_deferred(self, email_dispatcher, session):
        session.post.return_value = make_response(500, {'error': 'Failed to send email'})

        result = email_dispatcher.send(YourTurnNotification('jane@x.com', 'Jane', 'Doe'))

        assert isinstance(result, Deferred)
        assert '500' in result.reason
        assert 'Failed to send email' in result.reason

    def test_unverified_domain_is_deferred(self, email_dispatcher, session):
        session.post.return_value = make_response(
            403, {'error': 'Failed to send email', 'details': 'Please verify a domain to send emails'}
        )

        result = email_dispatcher.send(YourTurnNotification('jane@x.com', 'Jane', 'Doe'))

        assert result == Deferred(reason='sending domain is not verified')

    def test_non_json_error_body(self, email_dispatcher, session):
        session.post.return_value = make_response(502, ValueError('no json'))
        result = email_dispatcher.send(YourTurnNotification('jane@x.com', 'Jane', 'Doe'))
        assert 'Unknown error' in result.reason

    def test_missing_url_is_deferred_without_request(self, session):
        dispatcher = EmailDispatcher(url='', token='secret', session=session)
        dispatcher.url = None

        result = dispatcher.send(YourTurnNotification('jane@x.com', 'Jane', 'Doe'))

        assert isinstance(result, Deferred)
        session.post.assert_not_called()

    def test_send_email_builds_variant(self, email_dispatcher, session):
        session.post.return_value = make_response(200, {'emailId': 'x'})
        email_dispatcher.send_email('jane@x.com', 'Jane', 'Doe', 'decline', {'reason': 'Full today'})
        assert session.post.call_args.kwargs['json']['reason'] == 'Full today'
