import functools
from typing import Callable

from chalice import Response

from chalicelib.constants import status_codes
from chalicelib.utils.exceptions import ValidationError, AuthorizationError, InvalidTransition, \
    PersistenceFailure, RecordNotFound, RecordExists, NotAuthorizedException
from chalicelib.utils.logger import logger, log_exception


def error_response(error: Exception, msg: str = "", status_code: int = 400, *args, **kwargs):
    log_exception(error=error, msg=msg, status_code=status_code, *args, **kwargs)
    body = {
        'error': str(error),
        'exception': error.__class__.__name__,
        "message": str(msg),
        'error_id': getattr(logger, 'current_request_id', None),
        'level': getattr(error, 'LEVEL', 'exception')
    }
    if isinstance(error, ValidationError):
        body['fields'] = error.fields
    if isinstance(error, AuthorizationError):
        body['required_roles'] = error.required_roles
        body['redirect_to'] = error.redirect_to
    if isinstance(error, InvalidTransition):
        body['current_status'] = error.current_status
    if isinstance(error, PersistenceFailure):
        body['retry'] = error.retryable
    return Response(
        body=body,
        status_code=status_code,
        headers={'Content-Type': 'application/json'}
    )


def request_exception_handler(func: Callable):
    @functools.wraps(func)
    def result(*args, **kwargs):
        try:
            logger.info(f'Calling function {func.__name__}')
            return func(*args, **kwargs)
        except ValidationError as validation_error:
            return error_response(
                error=validation_error,
                msg=f'function = {func.__name__} , error = {validation_error}',
                status_code=status_codes.http400)
        except AuthorizationError as authorization_error:
            return error_response(
                error=authorization_error,
                msg=str(authorization_error),
                status_code=status_codes.http403)
        except InvalidTransition as invalid_transition:
            return error_response(
                error=invalid_transition,
                msg=f'function = {func.__name__} , error = {invalid_transition}',
                status_code=status_codes.http409)
        except RecordNotFound as not_found:
            return error_response(
                error=not_found,
                msg=f'function = {func.__name__} , error = {not_found}',
                status_code=status_codes.http404)
        except RecordExists as record_exists:
            return error_response(
                error=record_exists,
                msg=f'function = {func.__name__} , error = {record_exists}',
                status_code=status_codes.http409)
        except PersistenceFailure as persistence_failure:
            return error_response(
                error=persistence_failure,
                msg='Could not reach the data store, please try again',
                status_code=status_codes.http503)
        except NotAuthorizedException as not_authorized:
            return error_response(
                error=not_authorized,
                msg='Please sign in again',
                status_code=status_codes.http401)
        except Exception as exception:
            return error_response(
                error=exception,
                msg=f'function = {func.__name__}, error = {exception}',
                status_code=status_codes.http500)
    return result


def log_start_finish(func: Callable):
    @functools.wraps(func)
    def result(*args, **kwargs):
        logger.info(f'{func.__name__} ::: started')
        response = func(*args, **kwargs)
        logger.info(f'{func.__name__} ::: finished')
        return response
    return result
