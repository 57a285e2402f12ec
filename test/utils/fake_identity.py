import uuid
from typing import Dict, List, Optional

from chalicelib import identity
from chalicelib.utils import exceptions


class FakeDirectory:
    """
    Accounts of a fake user pool. The access token of an account is its user id,
    the refresh token is the user id prefixed with refresh-
    """

    def __init__(self):
        self.accounts: Dict[str, Dict] = {}
        self.sign_ups: List[Dict] = []

    def add_account(self, email: str, password: str = '123456', user_id: Optional[str] = None) -> str:
        user_id = user_id or str(uuid.uuid4())
        self.accounts[email] = {'password': password, 'user_id': user_id}
        return user_id

    def by_user_id(self, user_id: str) -> Optional[str]:
        return next((email for email, account in self.accounts.items() if account['user_id'] == user_id), None)

    def provider(self) -> 'FakeIdentityProvider':
        return FakeIdentityProvider(self)


class FakeIdentityProvider(identity.CognitoIdentityProvider):

    def __init__(self, directory: FakeDirectory):
        super().__init__(pool_id='eu-central-1_test', client_id='test-client', region='eu-central-1')
        self.directory = directory

    def _session_for(self, user_id: str) -> identity.AuthSession:
        return identity.AuthSession(user_id=user_id, email=self.directory.by_user_id(user_id), access_token=user_id,
                                    id_token=f'id-{user_id}', refresh_token=f'refresh-{user_id}')

    def sign_up(self, email: str, password: str, metadata: Optional[Dict] = None) -> str:
        metadata = {key: value for key, value in (metadata or {}).items()
                    if key not in identity.PROTECTED_METADATA}
        if email in self.directory.accounts:
            raise exceptions.ValidationError('User already exists', fields={'credentials': 'User already exists'})
        user_id = self.directory.add_account(email, password)
        self.directory.sign_ups.append({'email': email, 'user_id': user_id, 'metadata': metadata})
        return user_id

    def sign_in_with_password(self, email: str, password: str) -> identity.AuthSession:
        account = self.directory.accounts.get(email)
        if account is None or account['password'] != password:
            raise exceptions.NotAuthorizedException('Incorrect username or password.')
        self._session = self._session_for(account['user_id'])
        self._emit(identity.SIGNED_IN, self._session)
        return self._session

    def sign_out(self) -> None:
        self._session = None
        self._emit(identity.SIGNED_OUT, None)

    def set_session(self, access_token: str, refresh_token: Optional[str] = None,
                    id_token: Optional[str] = None) -> identity.AuthSession:
        self._session = self._session_for(self.verify_access_token(access_token))
        return self._session

    def refresh_session(self, refresh_token: Optional[str] = None) -> identity.AuthSession:
        refresh_token = refresh_token or (self._session.refresh_token if self._session else None)
        if not refresh_token or not refresh_token.startswith('refresh-'):
            raise exceptions.NotAuthorizedException('No session to refresh')
        self._session = self._session_for(self.verify_access_token(refresh_token[len('refresh-'):]))
        self._emit(identity.TOKEN_REFRESHED, self._session)
        return self._session

    def verify_access_token(self, access_token: str) -> str:
        if not access_token or self.directory.by_user_id(access_token) is None:
            raise exceptions.NotAuthorizedException('Token is not valid')
        return access_token
