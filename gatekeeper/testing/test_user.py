import pytest

from gatekeeper.user import User


@pytest.mark.parametrize('user,expected', [
    (User('a'), True),
    (User(123), True),
    (User(''), False),
    (User(True), False),
    (User(), False),
    (User(custom_ids={'companyID': ''}), False),
    (User(custom_ids={'companyID': 'c1'}), True),
])
def test_identifiable(user, expected):
    assert user.identifiable is expected


def test_get_unit_id():
    user = User(42, custom_ids={'companyID': 'c1'})
    assert user.get_unit_id('userID') == '42'
    assert user.get_unit_id('USERID') == '42'
    assert user.get_unit_id(None) == '42'
    assert user.get_unit_id('companyID') == 'c1'
    assert user.get_unit_id('companyid') == 'c1'
    assert user.get_unit_id('teamID') is None


def test_get_field_prefers_built_in_attributes():
    user = User('a', email='a@example.com', app_version='1.2.3', custom={'email': 'other', 'plan': 'pro'}, private_attributes={'secret': 's'})
    assert user.get_field('email') == 'a@example.com'
    assert user.get_field('EMAIL') == 'a@example.com'
    assert user.get_field('appVersion') == '1.2.3'
    assert user.get_field('app_version') == '1.2.3'
    assert user.get_field('plan') == 'pro'
    assert user.get_field('secret') == 's'
    assert user.get_field('missing') is None
    assert user.get_field(None) is None


def test_get_field_falls_back_to_custom_when_built_in_is_absent():
    user = User('a', custom={'country': 'NZ'})
    assert user.get_field('country') == 'NZ'


def test_get_environment_field():
    user = User('a', environment={'tier': 'production'})
    assert user.get_environment_field('tier') == 'production'
    assert user.get_environment_field('TIER') == 'production'
    assert user.get_environment_field('other') is None


def test_to_dict_omits_empty_and_private_attributes():
    user = User('a', email='a@example.com', custom_ids={'companyID': 'c1'}, private_attributes={'secret': 's'}, environment={'tier': 'staging'})
    assert user.to_dict() == {
        'userID': 'a',
        'email': 'a@example.com',
        'customIDs': {'companyID': 'c1'},
        'statsigEnvironment': {'tier': 'staging'},
    }
    assert user.to_dict(include_private=True)['privateAttributes'] == {'secret': 's'}


def test_from_dict_restores_user():
    user = User('a', ip='1.2.3.4', user_agent='agent', country='US', locale='en_US', custom={'k': 1}, private_attributes={'p': 2})
    assert User.from_dict(user.to_dict(include_private=True)) == user


def test_with_environment_tier():
    user = User('a')
    assert user.with_environment_tier(None) is user
    tiered = user.with_environment_tier('staging')
    assert tiered.environment == {'tier': 'staging'}
    assert tiered.user_id == 'a'
    assert user.environment == {}


def test_with_environment_tier_keeps_declared_environment():
    user = User('a', environment={'tier': 'production'})
    assert user.with_environment_tier('staging') is user
