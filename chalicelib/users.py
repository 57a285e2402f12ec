from typing import Tuple, List, Dict, Optional

from boto3.dynamodb.conditions import Key, Attr
from chalice import Response

from chalicelib import policy
from chalicelib.base_class_entity import EntityBase, utc_now
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import ROLES, DEFAULT_SIGNUP_ROLE
from chalicelib.constants.status_codes import http200
from chalicelib.utils import auth as utils_auth, app as utils_app, data as utils_data, db as utils_db, exceptions
from chalicelib.utils.logger import logger


class Profile(EntityBase):
    pk = keys_structure.profiles_pk
    sk = keys_structure.profiles_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'email': lambda x: isinstance(x, str) and '@' in x,
        'created_at': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'role': lambda x: x in ROLES,
        'updated_at': lambda x: isinstance(x, str)
    }

    def __init__(self, id_, **kwargs):
        EntityBase.__init__(self, id_)
        self.email: str = kwargs.get('email')
        self.role: str = kwargs.get('role')
        self.created_at: str = kwargs.get('created_at') or utc_now()
        self.updated_at: str = kwargs.get('updated_at') or self.created_at
        self.record_type = 'profile'

    @classmethod
    def init_by_id(cls, user_id):
        c = cls(user_id)
        c.__init__(**c._get_db_item())
        return c

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk, self.sk.format(user_id=self.id_)

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'email': self.email,
            'role': self.role,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    def to_ui(self) -> Dict:
        return self._to_ui()


def get_profile(user_id: str) -> Profile:
    return Profile.init_by_id(user_id)


def create_profile(user_id: str, email: str, role: str = DEFAULT_SIGNUP_ROLE) -> Profile:
    """
    Writes the profile record, replacing an existing one
    """
    profile = Profile(user_id, email=email, role=role)
    profile._create_db_record(overwrite=True)
    return profile


def list_profiles(search: Optional[str] = None, role: Optional[str] = None) -> List[Profile]:
    filter_expression = Attr('role_').eq(role) if role and role != 'all' else None
    records: List[Dict] = utils_db.query_items_paged(Key('partkey').eq(Profile.pk),
                                                     filter_expression=filter_expression)
    profiles = [Profile.from_db_record(record) for record in records]
    if search and search.strip():
        search = search.strip().casefold()
        profiles = [profile for profile in profiles if search in (profile.email or '').casefold()]
    return sorted(profiles, key=lambda profile: profile.created_at, reverse=True)


def update_role(actor_role: str, user_id: str, new_role: str) -> Profile:
    """
    Only an admin changes roles; the profile record is the single source of the role
    """
    policy.check(actor_role, policy.MANAGE_USERS)
    if new_role not in ROLES:
        raise exceptions.ValidationError(f'Unknown role {new_role}',
                                         fields={'role': f"Role must be one of: {', '.join(ROLES)}"})
    profile = get_profile(user_id)
    if profile.role == new_role:
        logger.info(f"update_role ::: {user_id=} already has {new_role=}")
        return profile
    profile.role = new_role
    profile.updated_at = utc_now()
    updated = Profile.from_db_record(profile._update_db_record(fields=['role', 'updated_at']))
    logger.info(f"update_role ::: {user_id=} role changed to {new_role}")
    return updated


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_current_user(request) -> Response:
    auth_result = request.auth_result
    profile = get_profile(auth_result['user_id'])
    return Response(status_code=http200, body={**profile.to_ui(),
                                               'landing': policy.default_landing(profile.role)})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_users(request) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_USERS)
    qp = request.query_params or {}
    profiles = list_profiles(search=qp.get('search'), role=qp.get('role'))
    return Response(status_code=http200, body={'users': [profile.to_ui() for profile in profiles]})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_update_user_role(request, user_id) -> Response:
    new_role = utils_data.parse_raw_body(request).get('role')
    profile = update_role(request.auth_result['role'], user_id, new_role)
    return Response(status_code=http200, body={'message': f'Role updated to {profile.role}',
                                               'user': profile.to_ui()})
