import os
from typing import Dict, List, Optional, Tuple

from chalice import Response

from chalicelib import policy
from chalicelib.base_class_entity import EntityBase, utc_now
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import DEFAULT_MENU_CATEGORIES, DEFAULT_PROJECT_NAME, PROJECT_NAME_MAX_LENGTH
from chalicelib.constants.status_codes import http200
from chalicelib.utils import auth as utils_auth, app as utils_app, data as utils_data, exceptions, db as utils_db
from chalicelib.utils.logger import logger


def configured_categories() -> List[str]:
    """
    Categories from MENU_CATEGORIES (comma separated), the built-in list otherwise
    """
    raw = os.environ.get('MENU_CATEGORIES', '')
    categories = [category.strip() for category in raw.split(',') if category.strip()]
    return categories or list(DEFAULT_MENU_CATEGORIES)


class Settings(EntityBase):
    pk = keys_structure.settings_pk
    sk = keys_structure.settings_sk

    required_mutable_fields_validation = {
        'project_name': lambda x: isinstance(x, str) and 0 < len(x) <= PROJECT_NAME_MAX_LENGTH,
        'menu_categories': lambda x: isinstance(x, list) and len(x) > 0 and all(isinstance(i, str) for i in x),
        'updated_at': lambda x: isinstance(x, str)
    }

    def __init__(self, id_=None, **kwargs):
        EntityBase.__init__(self, id_ or keys_structure.settings_sk)
        self.project_name: str = kwargs.get('project_name') or DEFAULT_PROJECT_NAME
        self.menu_categories: List[str] = list(kwargs.get('menu_categories') or configured_categories())
        self.updated_at: Optional[str] = kwargs.get('updated_at')
        self.record_type = 'settings'

    @classmethod
    def load(cls):
        c = cls()
        try:
            c.__init__(**c._get_db_item())
        except exceptions.RecordNotFound:
            logger.info("load ::: settings record does not exist yet, using defaults")
        return c

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk, self.sk

    def _to_dict(self) -> Dict:
        return {
            'project_name': self.project_name,
            'menu_categories': self.menu_categories,
            'updated_at': self.updated_at
        }

    def save(self):
        self.updated_at = utc_now()
        self._init_db_record()
        self._validate_mandatory_fields()
        utils_db.put_db_record(self.db_record)
        logger.info(f"save ::: settings saved {self.project_name=} {self.menu_categories=}")

    def to_ui(self) -> Dict:
        return self._to_dict()


def get_settings() -> Settings:
    return Settings.load()


def get_categories() -> List[str]:
    return get_settings().menu_categories


def validate_settings(project_name=None, menu_categories=None) -> Dict[str, str]:
    errors = {}
    if project_name is not None:
        if not isinstance(project_name, str):
            errors['project_name'] = 'Project name must be a text'
        elif len(project_name.strip()) > PROJECT_NAME_MAX_LENGTH:
            errors['project_name'] = f'Project name must be at most {PROJECT_NAME_MAX_LENGTH} characters'
    if menu_categories is not None:
        if not isinstance(menu_categories, list) or \
                not all(isinstance(category, str) and category.strip() for category in menu_categories):
            errors['menu_categories'] = 'Categories must be a list of names'
        elif not menu_categories:
            errors['menu_categories'] = 'At least one category is required'
        elif len({category.strip() for category in menu_categories}) != len(menu_categories):
            errors['menu_categories'] = 'Categories must be unique'
    return errors


def update_settings(project_name: Optional[str] = None, menu_categories: Optional[List[str]] = None) -> Settings:
    """
    Blank project name keeps the stored one. Removing a category never touches
    existing menu items, it only narrows what new writes may use
    """
    errors = validate_settings(project_name, menu_categories)
    if errors:
        raise exceptions.ValidationError('Settings are not valid', fields=errors)

    current = get_settings()
    if project_name is not None and project_name.strip():
        current.project_name = project_name.strip()
    if menu_categories is not None:
        current.menu_categories = [category.strip() for category in menu_categories]
    current.save()
    return current


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_settings(request) -> Response:
    policy.check(request.auth_result['role'], policy.VIEW_DASHBOARD)
    return Response(status_code=http200, body=get_settings().to_ui())


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_update_settings(request) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_SETTINGS)
    body = utils_data.parse_raw_body(request)
    updated = update_settings(project_name=body.get('project_name'), menu_categories=body.get('menu_categories'))
    return Response(status_code=http200, body={'message': 'Settings were successfully updated',
                                               'settings': updated.to_ui()})
