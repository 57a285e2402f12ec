from botocore.exceptions import ClientError
import pytest as pytest

from chalicelib import auth, identity, users
from chalicelib.constants.constants import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER, DEMO_USERS, SAMPLE_MENU_ITEMS
from chalicelib.menu_items import MenuCatalog
from chalicelib.utils.exceptions import NotAuthorizedException, PersistenceFailure
from test.utils.fixtures import fake_table, directory, staff, chalice_client, STAFF, staff_email
from test.utils.request_utils import make_request


class FakeCognitoClient:
    """
    Records admin calls of a cognito-idp client, the first user already exists
    """

    def __init__(self, existing=(), failing_code=None):
        self.existing = set(existing)
        self.failing_code = failing_code
        self.passwords = {}

    def admin_create_user(self, UserPoolId, Username, UserAttributes, MessageAction):
        if self.failing_code:
            raise ClientError({'Error': {'Code': self.failing_code, 'Message': 'failed'}}, 'AdminCreateUser')
        if Username in self.existing:
            raise ClientError({'Error': {'Code': 'UsernameExistsException', 'Message': 'exists'}},
                              'AdminCreateUser')
        self.existing.add(Username)

    def admin_set_user_password(self, UserPoolId, Username, Password, Permanent):
        self.passwords[Username] = (Password, Permanent)

    def admin_get_user(self, UserPoolId, Username):
        return {'Username': Username, 'UserAttributes': [{'Name': 'email', 'Value': Username},
                                                         {'Name': 'sub', 'Value': f'sub-{Username}'}]}


def post_confirmation_event(user_id, email, trigger='PostConfirmation_ConfirmSignUp', **attributes):
    return {
        'triggerSource': trigger,
        'userPoolId': 'eu-central-1_test',
        'userName': email,
        'request': {'userAttributes': {'sub': user_id, 'email': email, **attributes}},
        'response': {}
    }


def test_login_reads_role_from_profile(staff, directory):
    auth_context = auth.AuthContext()
    profile = auth_context.login(staff_email(ROLE_MANAGER), '123456')
    assert profile.role == ROLE_MANAGER
    assert auth_context.role == ROLE_MANAGER
    assert auth_context.user_id == STAFF[ROLE_MANAGER]


def test_login_with_wrong_password(staff):
    with pytest.raises(NotAuthorizedException):
        auth.AuthContext().login(staff_email(ROLE_ADMIN), 'wrong')


def test_login_without_profile(fake_table, directory):
    directory.add_account('ghost@restaurant.com', user_id='ghost')
    with pytest.raises(NotAuthorizedException):
        auth.AuthContext().login('ghost@restaurant.com', '123456')


def test_guard_without_session():
    auth_context = auth.AuthContext(provider=identity.CognitoIdentityProvider('pool', 'client', 'eu-central-1'))
    assert auth_context.guard('/login').allowed
    decision = auth_context.guard('/orders')
    assert not decision.allowed
    assert decision.redirect_to == '/login'


def test_guard_refetches_role(staff):
    auth_context = auth.AuthContext()
    auth_context.login(staff_email(ROLE_CASHIER), '123456')

    denied = auth_context.guard('/menu')
    assert not denied.allowed
    assert denied.redirect_to == '/new-order'

    users.update_role(ROLE_ADMIN, STAFF[ROLE_CASHIER], ROLE_MANAGER)

    assert auth_context.guard('/menu').allowed
    assert auth_context.role == ROLE_MANAGER
    assert auth_context.refresh_user_profile() is False


def test_refresh_user_profile_reports_change(staff):
    auth_context = auth.AuthContext()
    auth_context.login(staff_email(ROLE_MANAGER), '123456')
    users.update_role(ROLE_ADMIN, STAFF[ROLE_MANAGER], ROLE_CASHIER)
    assert auth_context.refresh_user_profile() is True
    assert auth_context.role == ROLE_CASHIER


def test_sign_out_event_clears_context(staff):
    auth_context = auth.AuthContext()
    auth_context.login(staff_email(ROLE_ADMIN), '123456')
    auth_context.provider.sign_out()
    assert auth_context.session is None
    assert auth_context.role is None
    assert not auth_context.guard('/dashboard').allowed


def test_closed_context_ignores_events(staff):
    auth_context = auth.AuthContext()
    auth_context.close()
    auth_context.provider.sign_in_with_password(staff_email(ROLE_ADMIN), '123456')
    assert auth_context.session is None


def test_post_confirmation_creates_cashier_profile(fake_table):
    event = post_confirmation_event('user-42', 'new@restaurant.com', **{'custom:role': ROLE_ADMIN})
    assert auth.cognito_post_confirmation(event) == event
    profile = users.get_profile('user-42')
    assert (profile.email, profile.role) == ('new@restaurant.com', ROLE_CASHIER)


def test_post_confirmation_keeps_existing_profile(fake_table):
    users.create_profile('user-42', 'boss@restaurant.com', ROLE_ADMIN)
    auth.cognito_post_confirmation(post_confirmation_event('user-42', 'boss@restaurant.com'))
    assert users.get_profile('user-42').role == ROLE_ADMIN


def test_post_confirmation_skips_other_triggers(fake_table):
    auth.cognito_post_confirmation(post_confirmation_event('user-43', 'x@restaurant.com',
                                                           trigger='PostConfirmation_ConfirmForgotPassword'))
    assert fake_table.records('profiles') == []


def test_seed_demo_users(fake_table):
    client = FakeCognitoClient(existing={DEMO_USERS[0]['email']})
    profiles = auth.seed_demo_users(client=client, pool_id='eu-central-1_test')

    assert [(profile.email, profile.role) for profile in profiles] == [
        ('admin@gmail.com', ROLE_ADMIN), ('manager@gmail.com', ROLE_MANAGER), ('cashier@gmail.com', ROLE_CASHIER)
    ]
    assert users.get_profile('sub-admin@gmail.com').role == ROLE_ADMIN
    assert client.passwords['cashier@gmail.com'] == ('123456', True)


def test_seed_demo_users_provider_failure(fake_table):
    with pytest.raises(PersistenceFailure):
        auth.seed_demo_users(client=FakeCognitoClient(failing_code='InternalErrorException'), pool_id='pool')
    assert fake_table.records('profiles') == []


def test_seed_menu_items(fake_table):
    catalog = MenuCatalog()
    seeded = auth.seed_menu_items(catalog)
    assert sorted(item.name for item in seeded) == sorted(item['name'] for item in SAMPLE_MENU_ITEMS)
    assert auth.seed_menu_items(catalog) == []
    assert len(catalog.list_items()) == 6


def test_login_endpoint(chalice_client, staff):
    response = make_request(chalice_client, '/auth/login', 'POST',
                            json_body={'email': staff_email(ROLE_CASHIER), 'password': '123456'})
    assert response.status_code == 200
    assert response.json_body['user']['role'] == ROLE_CASHIER
    assert response.json_body['landing'] == '/new-order'
    assert response.json_body['session']['access_token'] == STAFF[ROLE_CASHIER]


def test_login_endpoint_errors(chalice_client, staff):
    wrong = make_request(chalice_client, '/auth/login', 'POST',
                         json_body={'email': staff_email(ROLE_CASHIER), 'password': 'nope'})
    assert wrong.status_code == 401

    missing = make_request(chalice_client, '/auth/login', 'POST', json_body={'email': staff_email(ROLE_CASHIER)})
    assert missing.status_code == 400
    assert missing.json_body['fields'] == {'password': 'Password is required'}


def test_signup_ignores_requested_role(chalice_client, directory):
    response = make_request(chalice_client, '/auth/signup', 'POST',
                            json_body={'email': 'eve@restaurant.com', 'password': 'secret1', 'role': ROLE_ADMIN})
    assert response.status_code == 201
    assert response.json_body['role'] == ROLE_CASHIER
    assert directory.sign_ups[0]['metadata'] == {}


def test_refresh_endpoint(chalice_client, staff):
    response = make_request(chalice_client, '/auth/refresh', 'POST',
                            json_body={'refresh_token': f'refresh-{STAFF[ROLE_MANAGER]}'})
    assert response.status_code == 200
    assert response.json_body['user']['role'] == ROLE_MANAGER

    assert make_request(chalice_client, '/auth/refresh', 'POST', json_body={}).status_code == 401


def test_logout_endpoint(chalice_client, staff):
    response = make_request(chalice_client, '/auth/logout', 'POST', token=staff[ROLE_ADMIN])
    assert response.status_code == 200
    assert response.json_body['redirect_to'] == '/login'


def test_navigation_endpoint(chalice_client, staff):
    anonymous = make_request(chalice_client, '/navigation', query={'path': '/orders'})
    assert anonymous.json_body == {'allowed': False, 'path': '/orders', 'redirect_to': '/login',
                                   'required_roles': [], 'message': 'Please sign in'}

    cashier = make_request(chalice_client, '/navigation', query={'path': '/menu'}, token=staff[ROLE_CASHIER])
    assert cashier.status_code == 200
    assert cashier.json_body['allowed'] is False
    assert cashier.json_body['redirect_to'] == '/new-order'

    admin = make_request(chalice_client, '/navigation', query={'path': '/settings'}, token=staff[ROLE_ADMIN])
    assert admin.json_body['allowed'] is True
