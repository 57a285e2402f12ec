import os
from typing import Dict, List, Optional

from botocore.exceptions import ClientError
from chalice import Response

from chalicelib import identity, policy, users
from chalicelib.constants.constants import DEMO_USERS, DEFAULT_SIGNUP_ROLE, SAMPLE_MENU_ITEMS
from chalicelib.constants.status_codes import http200, http201
from chalicelib.menu_items import MenuCatalog, MenuItem
from chalicelib.utils import auth as utils_auth, app as utils_app, data as utils_data, exceptions
from chalicelib.utils.boto_clients import cognito_client
from chalicelib.utils.logger import logger


class AuthContext:
    """
    Session of one client: who is signed in and which role the profile gives them
    """

    def __init__(self, provider: Optional[identity.CognitoIdentityProvider] = None):
        self.provider = provider or identity.get_identity_provider()
        self.session: Optional[identity.AuthSession] = None
        self.profile: Optional[users.Profile] = None
        self._unsubscribe = self.provider.on_auth_state_change(self._on_auth_state_change)

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    @property
    def role(self) -> Optional[str]:
        return self.profile.role if self.profile else None

    def _on_auth_state_change(self, event: str, session: Optional[identity.AuthSession]):
        if event == identity.SIGNED_OUT:
            self.session, self.profile = None, None
        elif event in (identity.SIGNED_IN, identity.TOKEN_REFRESHED):
            self.session = session

    def _load_profile(self) -> users.Profile:
        try:
            self.profile = users.get_profile(self.session.user_id)
        except exceptions.RecordNotFound as error:
            raise exceptions.NotAuthorizedException(f'No profile for user {self.session.user_id}') from error
        return self.profile

    def login(self, email: str, password: str) -> users.Profile:
        """
        Credentials go to the identity provider, the role always comes from the profile record
        """
        self.session = self.provider.sign_in_with_password(email, password)
        profile = self._load_profile()
        logger.info(f"login ::: {email} signed in as {profile.role}")
        return profile

    def restore(self, access_token: str, refresh_token: Optional[str] = None) -> users.Profile:
        self.session = self.provider.set_session(access_token, refresh_token=refresh_token)
        return self._load_profile()

    def logout(self) -> None:
        self.provider.sign_out()
        self.session, self.profile = None, None

    def close(self) -> None:
        self._unsubscribe()

    def refresh_user_profile(self) -> bool:
        """
        Re-reads the role from the profile record
        :return:
        True if the role changed since the last read
        """
        if self.session is None:
            return False
        previous_role = self.role
        self._load_profile()
        changed = previous_role != self.role
        if changed:
            logger.info(f"refresh_user_profile ::: role of {self.user_id} changed {previous_role} -> {self.role}")
        return changed

    def guard(self, path: str) -> policy.NavigationDecision:
        path = policy.normalize_path(path)
        if self.session is None:
            if path in policy.PUBLIC_ROUTES:
                return policy.NavigationDecision(allowed=True, path=path)
            return policy.NavigationDecision(allowed=False, path=path, redirect_to=policy.LOGIN_PAGE,
                                             message='Please sign in')
        self.refresh_user_profile()
        decision = policy.evaluate_navigation(self.role, path)
        if not decision.allowed:
            logger.warning(f"guard ::: {self.user_id} ({self.role}) denied {path}, redirect to {decision.redirect_to}")
        return decision


def cognito_post_confirmation(event: Dict) -> Dict:
    """
    Creates the profile of a freshly confirmed account with the default role.
    Whatever role the client put in its attributes is ignored
    """
    attributes = event.get('request', {}).get('userAttributes', {})
    user_id, email = attributes.get('sub'), attributes.get('email')
    if attributes.get('custom:role'):
        logger.warning(f"cognito_post_confirmation ::: ignoring client role={attributes['custom:role']} for {email}")
    if event.get('triggerSource') != 'PostConfirmation_ConfirmSignUp':
        logger.info(f"cognito_post_confirmation ::: skipping {event.get('triggerSource')=}")
        return event
    try:
        users.get_profile(user_id)
        logger.info(f"cognito_post_confirmation ::: profile of {email} already exists")
    except exceptions.RecordNotFound:
        users.create_profile(user_id, email, DEFAULT_SIGNUP_ROLE)
        logger.info(f"cognito_post_confirmation ::: profile of {email} created with role {DEFAULT_SIGNUP_ROLE}")
    return event


@identity.identity_guard
def seed_demo_users(client=None, pool_id: Optional[str] = None) -> List[users.Profile]:
    """
    Creates (or resets) the demo accounts; their roles are written to the profiles here,
    on the server side
    """
    client = client or cognito_client
    pool_id = pool_id or os.environ.get('COGNITO_POOL_ID')
    profiles = []
    for demo_user in DEMO_USERS:
        email = demo_user['email']
        try:
            client.admin_create_user(
                UserPoolId=pool_id,
                Username=email,
                UserAttributes=[{'Name': 'email', 'Value': email}, {'Name': 'email_verified', 'Value': 'true'}],
                MessageAction='SUPPRESS'
            )
            logger.info(f"seed_demo_users ::: {email} created")
        except ClientError as error:
            if error.response.get('Error', {}).get('Code') != 'UsernameExistsException':
                raise
            logger.info(f"seed_demo_users ::: {email} already exists, updating")
        client.admin_set_user_password(UserPoolId=pool_id, Username=email, Password=demo_user['password'],
                                       Permanent=True)
        user = client.admin_get_user(UserPoolId=pool_id, Username=email)
        user_id = next(attr['Value'] for attr in user['UserAttributes'] if attr['Name'] == 'sub')
        profiles.append(users.create_profile(user_id, email, demo_user['role']))
    return profiles


def seed_menu_items(catalog: Optional[MenuCatalog] = None) -> List[MenuItem]:
    """
    Loads the sample menu into an empty catalog, does nothing otherwise
    """
    catalog = catalog or MenuCatalog()
    if catalog.list_items():
        logger.info("seed_menu_items ::: catalog is not empty, skipping")
        return []
    return [catalog.add_item(dict(item)) for item in SAMPLE_MENU_ITEMS]


def session_body(auth_context: AuthContext) -> Dict:
    return {
        'session': auth_context.session.to_dict(),
        'user': auth_context.profile.to_ui(),
        'landing': policy.default_landing(auth_context.role)
    }


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_login(request) -> Response:
    utils_auth.set_request_id(request)
    body = utils_data.parse_raw_body(request)
    email, password = body.get('email'), body.get('password')
    if not email or not password:
        raise exceptions.ValidationError('Email and password are required',
                                         fields={key: f'{key.capitalize()} is required'
                                                 for key in ('email', 'password') if not body.get(key)})
    auth_context = AuthContext()
    auth_context.login(email, password)
    return Response(status_code=http200, body=session_body(auth_context))


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_signup(request) -> Response:
    utils_auth.set_request_id(request)
    body = utils_data.parse_raw_body(request)
    email, password = body.get('email'), body.get('password')
    if not email or not password:
        raise exceptions.ValidationError('Email and password are required',
                                         fields={key: f'{key.capitalize()} is required'
                                                 for key in ('email', 'password') if not body.get(key)})
    metadata = dict(body.get('metadata') or {})
    if 'role' in body:
        metadata['role'] = body['role']
    user_id = identity.get_identity_provider().sign_up(email, password, metadata)
    return Response(status_code=http201, body={'message': 'Account created, confirm your email to sign in',
                                               'user_id': user_id, 'role': DEFAULT_SIGNUP_ROLE})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_refresh_session(request) -> Response:
    utils_auth.set_request_id(request)
    refresh_token = utils_data.parse_raw_body(request).get('refresh_token')
    auth_context = AuthContext()
    auth_context.session = auth_context.provider.refresh_session(refresh_token)
    auth_context.refresh_user_profile()
    return Response(status_code=http200, body=session_body(auth_context))


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_logout(request) -> Response:
    auth_context = AuthContext()
    auth_context.restore(utils_auth.get_bearer_token(request))
    auth_context.logout()
    return Response(status_code=http200, body={'message': 'Signed out', 'redirect_to': policy.LOGIN_PAGE})


@utils_app.request_exception_handler
@utils_app.log_start_finish
def endpoint_navigation(request) -> Response:
    """
    Route guard: the role is fetched again for every navigation
    """
    utils_auth.set_request_id(request)
    path = (request.query_params or {}).get('path', '/')
    auth_context = AuthContext()
    try:
        auth_context.restore(utils_auth.get_bearer_token(request))
    except exceptions.NotAuthorizedException as error:
        logger.info(f"endpoint_navigation ::: anonymous navigation to {path}, {error}")
    decision = auth_context.guard(path)
    return Response(status_code=http200, body=decision.to_dict())
