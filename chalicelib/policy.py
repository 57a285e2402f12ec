"""
Role based authorization policy.

Pure mapping of (role, action) to allow/deny plus the navigation rules built
on top of it. Nothing here touches the store: callers must pass the role they
have just read from the profile record.
"""
from typing import Dict, FrozenSet, List, NamedTuple, Optional

from chalicelib.constants.constants import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER, ROLES
from chalicelib.utils.exceptions import AuthorizationError

VIEW_DASHBOARD = 'view-dashboard'
MANAGE_MENU = 'manage-menu'
MANAGE_ORDERS = 'manage-orders'
CREATE_ORDER = 'create-order'
MANAGE_USERS = 'manage-users'
VIEW_REPORTS = 'view-reports'
MANAGE_SETTINGS = 'manage-settings'

ACTIONS = (VIEW_DASHBOARD, MANAGE_MENU, MANAGE_ORDERS, CREATE_ORDER, MANAGE_USERS, VIEW_REPORTS,
           MANAGE_SETTINGS)

POLICY: Dict[str, FrozenSet[str]] = {
    VIEW_DASHBOARD: frozenset({ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER}),
    MANAGE_MENU: frozenset({ROLE_ADMIN, ROLE_MANAGER}),
    MANAGE_ORDERS: frozenset({ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER}),
    CREATE_ORDER: frozenset({ROLE_ADMIN, ROLE_CASHIER}),
    MANAGE_USERS: frozenset({ROLE_ADMIN}),
    VIEW_REPORTS: frozenset({ROLE_ADMIN, ROLE_MANAGER}),
    MANAGE_SETTINGS: frozenset({ROLE_ADMIN}),
}

LOGIN_PAGE = '/login'
UNAUTHORIZED_PAGE = '/unauthorized'

DEFAULT_LANDING = {
    ROLE_ADMIN: '/dashboard',
    ROLE_MANAGER: '/menu',
    ROLE_CASHIER: '/new-order',
}

PUBLIC_ROUTES = (LOGIN_PAGE, UNAUTHORIZED_PAGE)

ROUTE_ACTIONS = {
    '/dashboard': VIEW_DASHBOARD,
    '/menu': MANAGE_MENU,
    '/orders': MANAGE_ORDERS,
    '/new-order': CREATE_ORDER,
    '/users': MANAGE_USERS,
    '/reports': VIEW_REPORTS,
    '/settings': MANAGE_SETTINGS,
}


class NavigationDecision(NamedTuple):
    allowed: bool
    path: str
    redirect_to: Optional[str] = None
    required_roles: tuple = ()
    message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'allowed': self.allowed,
            'path': self.path,
            'redirect_to': self.redirect_to,
            'required_roles': list(self.required_roles),
            'message': self.message
        }


def is_allowed(role: Optional[str], action: str) -> bool:
    return role in POLICY.get(action, frozenset())


def required_roles(action: str) -> List[str]:
    """
    Roles allowed to perform the action, in the canonical role order
    """
    allowed = POLICY.get(action, frozenset())
    return [role for role in ROLES if role in allowed]


def default_landing(role: Optional[str]) -> str:
    return DEFAULT_LANDING.get(role, UNAUTHORIZED_PAGE)


def denial_message(action: str) -> str:
    roles = required_roles(action)
    if not roles:
        return f'Action {action} is not available'
    return f"Access denied: {action} requires role {' or '.join(roles)}"


def check(role: Optional[str], action: str) -> None:
    """
    Raise AuthorizationError unless the role may perform the action
    """
    if not is_allowed(role, action):
        raise AuthorizationError(denial_message(action), required_roles=required_roles(action),
                                 redirect_to=default_landing(role))


def check_any(role: Optional[str], actions) -> None:
    if not any(is_allowed(role, action) for action in actions):
        roles = [role_ for role_ in ROLES if any(role_ in POLICY.get(action, ()) for action in actions)]
        raise AuthorizationError(f"Access denied: requires role {' or '.join(roles)}", required_roles=roles,
                                 redirect_to=default_landing(role))


def normalize_path(path: str) -> str:
    path = '/' + (path or '').strip().strip('/')
    return path.split('?')[0]


def evaluate_navigation(role: Optional[str], path: str) -> NavigationDecision:
    path = normalize_path(path)
    if path in PUBLIC_ROUTES:
        return NavigationDecision(allowed=True, path=path)
    if path == '/':
        return NavigationDecision(allowed=role in ROLES, path=path, redirect_to=default_landing(role),
                                  required_roles=tuple(ROLES))

    action = ROUTE_ACTIONS.get(path)
    if action is None:
        return NavigationDecision(allowed=False, path=path, redirect_to=default_landing(role),
                                  message=f'Page {path} does not exist')
    if is_allowed(role, action):
        return NavigationDecision(allowed=True, path=path)
    return NavigationDecision(allowed=False, path=path, redirect_to=default_landing(role),
                              required_roles=tuple(required_roles(action)), message=denial_message(action))
