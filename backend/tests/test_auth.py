"""
Tests for reading Cognito claims off API Gateway events.
"""
from speechtasks.auth import get_user_email, get_user_groups, get_user_sub, is_admin


def _event(claims):
    return {'requestContext': {'authorizer': {'claims': claims}}}


class TestClaims:

    def test_sub_and_email(self):
        event = _event({'sub': 'u-123', 'email': 'amina@example.com'})
        assert get_user_sub(event) == 'u-123'
        assert get_user_email(event) == 'amina@example.com'

    def test_unauthenticated_event(self):
        assert get_user_sub({}) is None
        assert get_user_email({'requestContext': None}) is None
        assert get_user_groups({}) == []

    def test_groups_from_comma_separated_claim(self):
        event = _event({'sub': 'u-1', 'cognito:groups': 'admin,reviewers'})
        assert get_user_groups(event) == ['admin', 'reviewers']
        assert is_admin(event) is True

    def test_groups_from_list_claim(self):
        event = _event({'sub': 'u-1', 'cognito:groups': ['contributors']})
        assert is_admin(event) is False
