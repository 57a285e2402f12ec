import functools
import os
import threading
from typing import Callable, Dict, List, NamedTuple, Optional

from botocore.exceptions import BotoCoreError, ClientError
from pycognito import Cognito
from pycognito.exceptions import TokenVerificationException

from chalicelib.utils import exceptions
from chalicelib.utils.boto_clients import main_boto_region
from chalicelib.utils.logger import logger, log_exception

SIGNED_IN = 'SIGNED_IN'
SIGNED_OUT = 'SIGNED_OUT'
TOKEN_REFRESHED = 'TOKEN_REFRESHED'

CREDENTIAL_ERRORS = ('NotAuthorizedException', 'UserNotFoundException', 'UserNotConfirmedException',
                     'PasswordResetRequiredException')
INPUT_ERRORS = ('UsernameExistsException', 'InvalidPasswordException', 'InvalidParameterException')

# Attributes the client is never allowed to set for itself
PROTECTED_METADATA = ('role', 'custom:role')


class AuthSession(NamedTuple):
    user_id: str
    email: Optional[str]
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'user_id': self.user_id,
            'email': self.email,
            'access_token': self.access_token,
            'id_token': self.id_token,
            'refresh_token': self.refresh_token
        }


def identity_guard(func):
    """
    Converts identity provider failures into the application exceptions
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TokenVerificationException as e:
            raise exceptions.NotAuthorizedException(f'Token is not valid: {e}') from e
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            message = e.response.get('Error', {}).get('Message', str(e))
            if code in CREDENTIAL_ERRORS:
                raise exceptions.NotAuthorizedException(message) from e
            if code in INPUT_ERRORS:
                raise exceptions.ValidationError(message, fields={'credentials': message}) from e
            log_exception(e, status_code=503, msg=f'{func.__name__} ::: identity provider error')
            raise exceptions.PersistenceFailure(f'{func.__name__} failed: {message}') from e
        except BotoCoreError as e:
            log_exception(e, status_code=503, msg=f'{func.__name__} ::: identity provider unreachable')
            raise exceptions.PersistenceFailure(f'{func.__name__} failed: {e}') from e

    return wrapper


class CognitoIdentityProvider:
    """
    Sign up / sign in / session handling on top of a Cognito user pool.
    One instance holds the session of one client
    """

    def __init__(self, pool_id: Optional[str] = None, client_id: Optional[str] = None,
                 region: Optional[str] = None):
        self.pool_id = pool_id or os.environ.get('COGNITO_POOL_ID')
        self.client_id = client_id or os.environ.get('COGNITO_CLIENT_ID')
        self.region = region or os.environ.get('AWS_REGION', main_boto_region)
        self._session: Optional[AuthSession] = None
        self._listeners: List[Callable] = []
        self._lock = threading.Lock()

    def _cognito(self, username: Optional[str] = None, **tokens) -> Cognito:
        return Cognito(self.pool_id, self.client_id, user_pool_region=self.region, username=username, **tokens)

    # auth state listeners
    def on_auth_state_change(self, callback: Callable[[str, Optional[AuthSession]], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, session: Optional[AuthSession]):
        with self._lock:
            listeners = list(self._listeners)
        logger.info(f"_emit ::: {event=} user_id={session.user_id if session else None}")
        for callback in listeners:
            callback(event, session)

    @staticmethod
    def _session_from(cognito: Cognito, email: Optional[str] = None) -> AuthSession:
        claims = cognito.verify_token(cognito.access_token, 'access_token', 'access')
        return AuthSession(
            user_id=claims['sub'],
            email=email or claims.get('username'),
            access_token=cognito.access_token,
            id_token=cognito.id_token,
            refresh_token=cognito.refresh_token
        )

    @identity_guard
    def sign_up(self, email: str, password: str, metadata: Optional[Dict] = None) -> str:
        """
        Registers the account. The role is never taken from the client, a new account
        gets the default role when the sign up is confirmed
        :return:
        user id (cognito sub)
        """
        metadata = dict(metadata or {})
        for key in PROTECTED_METADATA:
            if key in metadata:
                logger.warning(f"sign_up ::: dropping client supplied {key}={metadata.pop(key)} for {email}")
        cognito = self._cognito()
        cognito.set_base_attributes(email=email)
        if metadata:
            cognito.add_custom_attributes(**metadata)
        response = cognito.register(email, password)
        logger.info(f"sign_up ::: {email} registered")
        return response.get('UserSub')

    @identity_guard
    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        cognito = self._cognito(username=email)
        cognito.authenticate(password=password)
        self._session = self._session_from(cognito, email=email)
        self._emit(SIGNED_IN, self._session)
        return self._session

    @identity_guard
    def sign_out(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            self._cognito(access_token=session.access_token, refresh_token=session.refresh_token).logout()
        self._emit(SIGNED_OUT, None)

    def get_session(self) -> Optional[AuthSession]:
        return self._session

    @identity_guard
    def set_session(self, access_token: str, refresh_token: Optional[str] = None,
                    id_token: Optional[str] = None) -> AuthSession:
        """
        Restores a session from tokens the client already holds
        """
        cognito = self._cognito(access_token=access_token, refresh_token=refresh_token, id_token=id_token)
        self._session = self._session_from(cognito)
        return self._session

    @identity_guard
    def refresh_session(self, refresh_token: Optional[str] = None) -> AuthSession:
        current = self._session
        refresh_token = refresh_token or (current.refresh_token if current else None)
        if not refresh_token:
            raise exceptions.NotAuthorizedException('No session to refresh')
        cognito = self._cognito(refresh_token=refresh_token)
        cognito.renew_access_token()
        if not cognito.refresh_token:
            cognito.refresh_token = refresh_token
        self._session = self._session_from(cognito, email=current.email if current else None)
        self._emit(TOKEN_REFRESHED, self._session)
        return self._session

    @identity_guard
    def verify_access_token(self, access_token: str) -> str:
        """
        :return:
        user id the token was issued to
        """
        if not access_token:
            raise exceptions.NotAuthorizedException('Access token is missing')
        claims = self._cognito().verify_token(access_token, 'access_token', 'access')
        return claims['sub']


_PROVIDER_FACTORY: Optional[Callable[[], CognitoIdentityProvider]] = None


def get_identity_provider() -> CognitoIdentityProvider:
    return (_PROVIDER_FACTORY or CognitoIdentityProvider)()


def use_identity_provider(factory: Optional[Callable[[], CognitoIdentityProvider]]):
    """
    Replaces the provider factory, returns the previous one
    """
    global _PROVIDER_FACTORY
    previous, _PROVIDER_FACTORY = _PROVIDER_FACTORY, factory
    return previous
