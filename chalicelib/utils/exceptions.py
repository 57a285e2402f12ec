__all__ = ["NotAuthorizedException", "AuthorizationError", "ValidationError", "InvalidTransition",
           "PersistenceFailure", "RecordNotFound", "RecordExists"]


class NotAuthorizedException(Exception):
    LEVEL = 'warning'


class AuthorizationError(Exception):
    """
    Role lacks permission for the requested action
    """
    LEVEL = 'warning'

    def __init__(self, message, required_roles=None, redirect_to=None):
        super().__init__(message)
        self.required_roles = list(required_roles or [])
        self.redirect_to = redirect_to


# Validations exceptions
class ValidationError(Exception):
    LEVEL = 'info'

    def __init__(self, message, fields=None):
        super().__init__(message)
        self.fields = dict(fields or {})


class InvalidTransition(Exception):
    LEVEL = 'warning'

    def __init__(self, current_status, new_status):
        super().__init__(f'Order status cannot change from {current_status} to {new_status}')
        self.current_status = current_status
        self.new_status = new_status


# Store exceptions
class PersistenceFailure(Exception):
    LEVEL = 'error'
    retryable = True


class RecordNotFound(PersistenceFailure):
    LEVEL = 'warning'
    retryable = False


class RecordExists(PersistenceFailure):
    LEVEL = 'warning'
    retryable = False
