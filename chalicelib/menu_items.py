from decimal import Decimal
from typing import List, Dict, Tuple, Optional, Callable
from urllib.parse import urlparse
from uuid import uuid4

from boto3.dynamodb.conditions import Key
from chalice import Response

from chalicelib import policy, settings
from chalicelib.base_class_entity import EntityBase, utc_now
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import PLACEHOLDER_IMAGE_URL
from chalicelib.constants.status_codes import http200, http201
from chalicelib.utils import auth as utils_auth, data as utils_data, exceptions, db as utils_db, app as utils_app
from chalicelib.utils.logger import logger

MENU_ITEM_FIELDS = ('name', 'description', 'price', 'category', 'image_url')


def normalize_image_url(value) -> str:
    """
    Image is never a reason to reject a menu item: anything that is not an absolute
    http(s) url becomes the placeholder image
    """
    if not isinstance(value, str) or not value.strip():
        return PLACEHOLDER_IMAGE_URL
    parsed = urlparse(value.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return PLACEHOLDER_IMAGE_URL
    return value.strip()


def validate_menu_item(data: Dict, categories: Optional[List[str]] = None, partial: bool = False) -> Dict[str, str]:
    """
    Field level validation of menu item input
    :param data: raw input (from a form or a request body)
    :param categories: currently configured categories, fetched lazily when None
    :param partial: validate only the fields present in data
    :return:
    dict field -> error message, empty when the input is valid
    """
    errors = {}

    for field in ('name', 'description'):
        if partial and field not in data:
            continue
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            errors[field] = f'{field.capitalize()} is required'

    if not partial or 'price' in data:
        price = utils_data.to_money(data.get('price'))
        if price is None:
            errors['price'] = 'Price must be a number'
        elif price <= 0:
            errors['price'] = 'Price must be greater than 0'

    if not partial or 'category' in data:
        category = data.get('category')
        if not isinstance(category, str) or not category.strip():
            errors['category'] = 'Category is required'
        else:
            if categories is None:
                categories = settings.get_categories()
            if category not in categories:
                errors['category'] = f"Category must be one of: {', '.join(categories)}"

    return errors


class MenuItem(EntityBase):
    pk = keys_structure.menu_items_pk
    sk = keys_structure.menu_items_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'created_at': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'name': lambda x: isinstance(x, str) and len(x.strip()) > 0,
        'description': lambda x: isinstance(x, str) and len(x.strip()) > 0,
        'price': lambda x: isinstance(x, Decimal) and x > 0,
        'category': lambda x: isinstance(x, str),
        'image_url': lambda x: isinstance(x, str),
        'updated_at': lambda x: isinstance(x, str)
    }

    def __init__(self, id_, **kwargs):
        EntityBase.__init__(self, id_)

        self.name: str = kwargs['name'].strip() if isinstance(kwargs.get('name'), str) else kwargs.get('name')
        self.description: str = kwargs['description'].strip() if isinstance(kwargs.get('description'), str) \
            else kwargs.get('description')
        self.price: Decimal = utils_data.to_money(kwargs.get('price'))
        self.category: str = kwargs.get('category')
        self.image_url: str = normalize_image_url(kwargs.get('image_url'))
        self.created_at: str = kwargs.get('created_at') or utc_now()
        self.updated_at: str = kwargs.get('updated_at') or self.created_at
        self.record_type = 'menu_item'

    @classmethod
    def init_by_id(cls, menu_item_id):
        logger.info("init_by_id ::: started")
        c = cls(id_=menu_item_id)
        c.__init__(**c._get_db_item())
        return c

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk, self.sk.format(menu_item_id=self.id_)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'name': self.name,
            'description': self.description,
            'price': self.price,
            'category': self.category,
            'image_url': self.image_url,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    def to_ui(self):
        return self._to_ui()


class MenuCatalog:
    """
    Owns the menu item invariants: every write is validated first and goes to the store
    before anybody else sees it
    """

    def __init__(self, categories_provider: Optional[Callable[[], List[str]]] = None):
        self.categories_provider = categories_provider or settings.get_categories

    def categories(self) -> List[str]:
        return list(self.categories_provider())

    def _validate(self, data: Dict, partial: bool = False):
        categories = self.categories() if (not partial or 'category' in data) else None
        errors = validate_menu_item(data, categories, partial=partial)
        if errors:
            logger.info(f"_validate ::: menu item input rejected {errors=}")
            raise exceptions.ValidationError('Menu item is not valid', fields=errors)

    def add_item(self, data: Dict) -> MenuItem:
        data = {key: value for key, value in data.items() if key in MENU_ITEM_FIELDS}
        self._validate(data)
        menu_item = MenuItem(id_=str(uuid4()), **data)
        menu_item._create_db_record()
        logger.info(f"add_item ::: menu item {menu_item.id_} {menu_item.name=} added")
        return menu_item

    def update_item(self, menu_item_id: str, updates: Dict) -> MenuItem:
        updates = {key: value for key, value in updates.items() if key in MENU_ITEM_FIELDS}
        if not updates:
            raise exceptions.ValidationError('Nothing to update', fields={})
        self._validate(updates, partial=True)

        menu_item = MenuItem(id_=menu_item_id, **updates)
        menu_item.updated_at = utc_now()
        updated_record = menu_item._update_db_record(fields=[*updates.keys(), 'updated_at'])
        updated = MenuItem.from_db_record(updated_record)
        logger.info(f"update_item ::: menu item {menu_item_id} updated fields={list(updates.keys())}")
        return updated

    def delete_item(self, menu_item_id: str) -> None:
        """
        Hard delete. Orders keep their own copy of name and price, so nothing else changes
        """
        MenuItem(id_=menu_item_id)._delete_db_record()
        logger.info(f"delete_item ::: menu item {menu_item_id} deleted")

    def get_item(self, menu_item_id: str) -> MenuItem:
        return MenuItem.init_by_id(menu_item_id)

    @staticmethod
    def list_items() -> List[MenuItem]:
        records: List[Dict] = utils_db.query_items_paged(Key('partkey').eq(keys_structure.menu_items_pk))
        items = [MenuItem.from_db_record(record) for record in records]
        return sorted(items, key=lambda item: ((item.name or '').lower(), item.id_))


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_menu_items(request, sync) -> Response:
    policy.check_any(request.auth_result['role'], (policy.MANAGE_MENU, policy.CREATE_ORDER))
    sync.refresh_menu()
    menu_items: List[Dict] = [item.to_ui() for item in sync.list_menu_items()]
    logger.info(f"endpoint_get_menu_items ::: returning {len(menu_items)} menu items")
    return Response(status_code=http200, body={'menu_items': menu_items, 'categories': settings.get_categories()})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_create_menu_item(request, sync) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_MENU)
    menu_item = sync.add_menu_item(utils_data.parse_raw_body(request))
    return Response(status_code=http201, body={'message': 'Menu item successfully created',
                                               'menu_item': menu_item.to_ui()})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_update_menu_item(request, sync, menu_item_id) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_MENU)
    menu_item = sync.update_menu_item(menu_item_id, utils_data.parse_raw_body(request))
    return Response(status_code=http200, body={'message': 'Menu item was successfully updated',
                                               'menu_item': menu_item.to_ui()})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_delete_menu_item(request, sync, menu_item_id) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_MENU)
    sync.delete_menu_item(menu_item_id)
    return Response(status_code=http200, body={'message': 'Menu item was successfully deleted', 'id': menu_item_id})
