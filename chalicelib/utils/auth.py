import functools
import uuid

from chalice.app import Request

from chalicelib import identity
from chalicelib.constants import keys_structure, status_codes
from chalicelib.utils import exceptions as utils_exceptions, db as utils_db
from chalicelib.utils.app import error_response
from chalicelib.utils.logger import log_request, logger


def set_request_id(request: Request) -> str:
    aws_request_id = getattr(getattr(request, 'lambda_context', None), 'aws_request_id', None) or str(uuid.uuid4())
    logger.current_request_id = aws_request_id.split('-')[-1]
    return logger.current_request_id


def get_bearer_token(request: Request) -> str:
    header = (request.headers or {}).get('authorization') or ''
    scheme, _, token = header.strip().partition(' ')
    token = token.strip() if scheme.lower() == 'bearer' else header.strip()
    if not token:
        raise utils_exceptions.NotAuthorizedException('Authorization header is missing')
    return token


def get_user_role(user_id: str):
    """
    Role is read from the profile record on every call, never from the token
    """
    try:
        profile_item = utils_db.get_db_item(
            partkey=keys_structure.profiles_pk,
            sortkey=keys_structure.profiles_sk.format(user_id=user_id)
        )
    except utils_exceptions.RecordNotFound as error:
        raise utils_exceptions.NotAuthorizedException(f'No profile for user {user_id}') from error
    return profile_item.get('role_'), profile_item.get('email')


def authenticate(func):
    """
    Wrapper for endpoint functions which require user's authentication,
    request must be the first argument
    """

    @functools.wraps(func)
    def result_auth(*args, **kwargs):
        request = args[0]
        set_request_id(request)
        log_request(request)
        try:
            user_id = identity.get_identity_provider().verify_access_token(get_bearer_token(request))
            user_role, user_email = get_user_role(user_id)
        except utils_exceptions.NotAuthorizedException as err:
            logger.error(f"authenticate ::: {str(err)}")
            return error_response(err, msg=f'{func.__name__}', status_code=status_codes.http401)
        except utils_exceptions.PersistenceFailure as err:
            logger.error(f"authenticate ::: {str(err)}")
            return error_response(err, msg=f'{func.__name__}', status_code=status_codes.http503)
        setattr(request, 'auth_result', {'user_id': user_id, 'role': user_role, 'email': user_email})
        result = func(*args, **kwargs)
        logger.info(f'authenticate ::: SUCCESS, func.__name__ {func.__name__}')
        return result

    return result_auth
