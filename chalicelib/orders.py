from datetime import datetime, date, time, timezone
from decimal import Decimal
from typing import Tuple, List, Dict, Optional, NamedTuple, Iterable, Callable
from uuid import uuid4

from boto3.dynamodb.conditions import Key, Attr
from chalice import Response

from chalicelib import policy
from chalicelib.base_class_entity import EntityBase, utc_now
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import WALK_IN_CUSTOMER
from chalicelib.constants.status_codes import http200, http201
from chalicelib.utils import auth as utils_auth, \
    data as utils_data, \
    db as utils_db, \
    app as utils_app, \
    exceptions
from chalicelib.utils.logger import logger, log_exception

STATUS_PENDING = 'pending'
STATUS_IN_PROGRESS = 'in-progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'

ORDER_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)

TRANSITIONS = {
    STATUS_PENDING: frozenset({STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_IN_PROGRESS: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in TRANSITIONS.get(current_status, frozenset())


# Short ids can collide, the header write is retried with a new id
ORDER_ID_ATTEMPTS = 3


def generate_order_id() -> str:
    return str(uuid4()).split('-')[0]


class Customer(NamedTuple):
    name: str
    contact: Optional[str] = None

    @classmethod
    def from_input(cls, name=None, contact=None) -> Optional['Customer']:
        """
        Blank name means a walk-in order, there is no customer to keep
        """
        if not isinstance(name, str) or not name.strip():
            return None
        contact = contact.strip() if isinstance(contact, str) and contact.strip() else None
        return cls(name=name.strip(), contact=contact)


class OrderLineItem(EntityBase):
    pk = keys_structure.order_items_pk
    sk = keys_structure.order_items_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'order_id': lambda x: isinstance(x, str),
        'position': lambda x: isinstance(x, int) and x >= 0,
        'name': lambda x: isinstance(x, str) and len(x) > 0,
        'price': lambda x: isinstance(x, Decimal) and x > 0,
        'quantity': lambda x: isinstance(x, int) and not isinstance(x, bool) and x >= 1,
        'subtotal': lambda x: isinstance(x, Decimal),
        'created_at': lambda x: isinstance(x, str)
    }

    optional_fields_validation = {
        'menu_item_id': lambda x: isinstance(x, str)
    }

    def __init__(self, id_=None, **kwargs):
        EntityBase.__init__(self, id_ or str(uuid4()))
        self.order_id: Optional[str] = kwargs.get('order_id')
        self.position: int = int(kwargs.get('position', 0))
        self.menu_item_id: Optional[str] = kwargs.get('menu_item_id')
        self.name: str = kwargs['name'].strip() if isinstance(kwargs.get('name'), str) else kwargs.get('name')
        self.price: Decimal = utils_data.to_money(kwargs.get('price'))
        quantity = kwargs.get('quantity', kwargs.get('qty'))
        self.quantity = int(quantity) if isinstance(quantity, Decimal) and quantity == quantity.to_integral_value() \
            else quantity
        self.subtotal: Optional[Decimal] = self.calculate_subtotal()
        self.created_at: Optional[str] = kwargs.get('created_at')
        self.record_type = 'order_item'

    @classmethod
    def from_menu_item(cls, menu_item, quantity: int) -> 'OrderLineItem':
        """
        Snapshot of name and price at the moment of ordering
        """
        return cls(menu_item_id=menu_item.id_, name=menu_item.name, price=menu_item.price, quantity=quantity)

    def calculate_subtotal(self) -> Optional[Decimal]:
        if self.price is None or not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            return None
        return (self.price * self.quantity).quantize(Decimal('1.00'))

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk, self.sk.format(order_id=self.order_id, position=self.position)

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'order_id': self.order_id,
            'position': self.position,
            'menu_item_id': self.menu_item_id,
            'name': self.name,
            'price': self.price,
            'quantity': self.quantity,
            'subtotal': self.subtotal,
            'created_at': self.created_at
        }

    def to_ui(self) -> Dict:
        return self._to_ui()


class Order(EntityBase):
    pk = keys_structure.orders_pk
    sk = keys_structure.orders_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'total_amount': lambda x: isinstance(x, Decimal) and x > 0,
        'created_at': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'status': lambda x: x in ORDER_STATUSES,
        'updated_at': lambda x: isinstance(x, str)
    }

    optional_fields_validation = {
        'customer_name': lambda x: isinstance(x, str),
        'customer_contact': lambda x: isinstance(x, str)
    }

    def __init__(self, id_, **kwargs):
        EntityBase.__init__(self, id_)
        self.customer_name: Optional[str] = kwargs.get('customer_name')
        self.customer_contact: Optional[str] = kwargs.get('customer_contact')
        self.total_amount: Optional[Decimal] = utils_data.to_money(kwargs.get('total_amount'))
        self.status: str = kwargs.get('status', STATUS_PENDING)
        self.created_at: str = kwargs.get('created_at') or utc_now()
        self.updated_at: str = kwargs.get('updated_at') or self.created_at
        self.items: List[OrderLineItem] = list(kwargs.get('items', []))
        self.record_type = 'order'

    @classmethod
    def init_by_id(cls, order_id: str, with_items: bool = True) -> 'Order':
        c = cls(id_=order_id)
        c.__init__(**c._get_db_item())
        if with_items:
            c.items = c._load_items()
        return c

    @property
    def customer(self) -> Optional[Customer]:
        return Customer.from_input(self.customer_name, self.customer_contact)

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk, self.sk.format(order_id=self.id_)

    def _load_items(self) -> List[OrderLineItem]:
        records = utils_db.query_items_paged(
            Key('partkey').eq(OrderLineItem.pk) &
            Key('sortkey').begins_with(keys_structure.order_items_sk_prefix.format(order_id=self.id_))
        )
        return sorted([OrderLineItem.from_db_record(record) for record in records], key=lambda item: item.position)

    def _to_dict(self) -> Dict:
        return {
            'id_': self.id_,
            'customer_name': self.customer_name,
            'customer_contact': self.customer_contact,
            'total_amount': self.total_amount,
            'status': self.status,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    def to_ui(self) -> Dict:
        item = self._to_ui()
        item['customer_name'] = self.customer_name or WALK_IN_CUSTOMER
        item['items'] = [line.to_ui() for line in self.items]
        return item


class OrderFilter(NamedTuple):
    start: Optional[object] = None
    end: Optional[object] = None
    status: Optional[str] = None
    search: Optional[str] = None
    ascending: bool = False


def to_utc_datetime(value, end_of_day: bool = False) -> Optional[datetime]:
    """
    Accepts datetime, date or an ISO-8601 string. Plain dates cover the whole day
    """
    if value is None or value == '':
        return None
    if isinstance(value, str):
        raw = value.strip().replace('Z', '+00:00')
        try:
            value = date.fromisoformat(raw) if len(raw) == 10 else datetime.fromisoformat(raw)
        except ValueError as error:
            raise exceptions.ValidationError(f'Invalid date {raw}', fields={'date': 'Date must be ISO-8601'}) \
                from error
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def filter_orders(orders: Iterable[Order], order_filter: Optional[OrderFilter] = None) -> List[Order]:
    order_filter = order_filter or OrderFilter()
    start = to_utc_datetime(order_filter.start)
    end = to_utc_datetime(order_filter.end, end_of_day=True)
    status = order_filter.status if order_filter.status not in (None, '', 'all') else None
    search = order_filter.search.strip().casefold() if order_filter.search and order_filter.search.strip() else None

    result = []
    for order in orders:
        created_at = to_utc_datetime(order.created_at)
        if start is not None and created_at < start:
            continue
        if end is not None and created_at > end:
            continue
        if status is not None and order.status != status:
            continue
        if search is not None and search not in order.id_.casefold() \
                and search not in (order.customer_name or '').casefold():
            continue
        result.append(order)
    return sorted(result, key=lambda order: (to_utc_datetime(order.created_at), order.id_),
                  reverse=not order_filter.ascending)


def validate_lines(lines: List[OrderLineItem]) -> Dict[str, str]:
    errors = {}
    if not lines:
        errors['items'] = 'Order must contain at least one item'
    for index, line in enumerate(lines):
        if not isinstance(line.name, str) or not line.name:
            errors[f'items[{index}].name'] = 'Item name is required'
        if line.price is None or line.price <= 0:
            errors[f'items[{index}].price'] = 'Price must be greater than 0'
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity < 1:
            errors[f'items[{index}].quantity'] = 'Quantity must be a whole number of at least 1'
    return errors


class OrderLifecycle:
    """
    Order status state machine and the order/line item invariants
    """

    @staticmethod
    def _as_line(line, position: int) -> OrderLineItem:
        if isinstance(line, OrderLineItem):
            data = line._to_dict()
            data.pop('id_')
        else:
            data = dict(line)
        data.update({'position': position, 'order_id': None, 'created_at': None})
        return OrderLineItem(**data)

    def create_order(self, lines: List, customer: Optional[Customer] = None) -> Order:
        lines = [self._as_line(line, position) for position, line in enumerate(lines or [])]
        errors = validate_lines(lines)
        if errors:
            logger.info(f"create_order ::: order rejected {errors=}")
            raise exceptions.ValidationError('Order is not valid', fields=errors)

        created_at = utc_now()
        order = Order(
            id_=generate_order_id(),
            customer_name=customer.name if customer else None,
            customer_contact=customer.contact if customer else None,
            total_amount=sum((line.subtotal for line in lines), Decimal('0.00')),
            status=STATUS_PENDING,
            created_at=created_at,
            updated_at=created_at
        )
        self._create_header(order)
        for line in lines:
            line.order_id, line.created_at = order.id_, created_at

        written: List[OrderLineItem] = []
        try:
            for line in lines:
                line._create_db_record()
                written.append(line)
        except exceptions.PersistenceFailure as error:
            self._compensate(order, written)
            raise exceptions.PersistenceFailure(f'Order {order.id_} could not be saved: {error}') from error

        order.items = lines
        logger.info(f"create_order ::: order {order.id_} created {order.total_amount=} items={len(lines)}")
        return order

    @staticmethod
    def _create_header(order: Order):
        for attempt in range(1, ORDER_ID_ATTEMPTS + 1):
            try:
                order._create_db_record()
                return
            except exceptions.RecordExists:
                if attempt == ORDER_ID_ATTEMPTS:
                    raise
                logger.warning(f"_create_header ::: order id {order.id_} already taken, generating a new one")
                order.id_ = generate_order_id()

    @staticmethod
    def _compensate(order: Order, written: List[OrderLineItem]):
        """
        Removes the header and the line items already written
        """
        logger.warning(f"_compensate ::: rolling back order {order.id_}, {len(written)} line items written")
        for entity in [*reversed(written), order]:
            pk, sk = entity._get_pk_sk()
            try:
                utils_db.delete_db_record({'partkey': pk, 'sortkey': sk})
            except exceptions.PersistenceFailure as error:
                log_exception(error, status_code=503, msg=f'_compensate ::: could not delete {pk=} {sk=}')

    def update_status(self, order_id: str, new_status: str) -> Order:
        if new_status not in ORDER_STATUSES:
            raise exceptions.ValidationError(f'Unknown order status {new_status}',
                                             fields={'status': f"Status must be one of: {', '.join(ORDER_STATUSES)}"})

        order = Order.init_by_id(order_id, with_items=False)
        if not can_transition(order.status, new_status):
            logger.warning(f"update_status ::: order {order_id} {order.status} -> {new_status} rejected")
            raise exceptions.InvalidTransition(order.status, new_status)

        order.status = new_status
        order.updated_at = utc_now()
        updated_record = order._update_db_record(fields=['status', 'updated_at'])
        updated = Order.from_db_record(updated_record)
        updated.items = updated._load_items()
        logger.info(f"update_status ::: order {order_id} moved to {new_status}")
        return updated

    @staticmethod
    def get_order(order_id: str) -> Order:
        return Order.init_by_id(order_id)

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        order_filter = order_filter or OrderFilter()
        filter_expression = None
        if order_filter.status not in (None, '', 'all'):
            filter_expression = Attr('status_').eq(order_filter.status)

        records: List[Dict] = utils_db.query_items_paged(Key('partkey').eq(Order.pk),
                                                         filter_expression=filter_expression)
        orders = [Order.from_db_record(record) for record in records]
        self._attach_items(orders)
        return filter_orders(orders, order_filter)

    @staticmethod
    def _attach_items(orders: List[Order]):
        if not orders:
            return
        records = utils_db.query_items_paged(Key('partkey').eq(OrderLineItem.pk))
        items_by_order: Dict[str, List[OrderLineItem]] = {}
        for record in records:
            line = OrderLineItem.from_db_record(record)
            items_by_order.setdefault(line.order_id, []).append(line)
        for order in orders:
            order.items = sorted(items_by_order.get(order.id_, []), key=lambda item: item.position)

    def fetch_orders_by_date_range(self, start, end) -> List[Order]:
        return self.list_orders(OrderFilter(start=start, end=end))


def lines_from_request(raw_items: List[Dict], menu_item_lookup: Callable) -> List[OrderLineItem]:
    """
    Request items reference menu items by id, the name and the price are taken from the catalog
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise exceptions.ValidationError('Order is not valid', fields={'items': 'Order must contain at least one item'})
    lines, errors = [], {}
    for index, raw_item in enumerate(raw_items):
        menu_item_id = raw_item.get('menu_item_id') if isinstance(raw_item, dict) else None
        if not menu_item_id:
            errors[f'items[{index}].menu_item_id'] = 'Menu item is required'
            continue
        try:
            menu_item = menu_item_lookup(menu_item_id)
        except exceptions.RecordNotFound:
            errors[f'items[{index}].menu_item_id'] = f'Menu item {menu_item_id} does not exist'
            continue
        lines.append(OrderLineItem.from_menu_item(menu_item, raw_item.get('quantity')))
    if errors:
        raise exceptions.ValidationError('Order is not valid', fields=errors)
    return lines


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_orders(request, sync) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_ORDERS)
    qp = request.query_params or {}
    order_filter = OrderFilter(start=qp.get('start'), end=qp.get('end'), status=qp.get('status'),
                               search=qp.get('search'), ascending=qp.get('order') == 'asc')
    sync.refresh_orders()
    orders = [order.to_ui() for order in sync.list_orders(order_filter)]
    return Response(status_code=http200, body={'orders': orders})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_order(request, sync, order_id) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_ORDERS)
    return Response(status_code=http200, body=sync.lifecycle.get_order(order_id).to_ui())


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_create_order(request, sync) -> Response:
    policy.check(request.auth_result['role'], policy.CREATE_ORDER)
    body = utils_data.parse_raw_body(request)
    lines = lines_from_request(body.get('items'), sync.catalog.get_item)
    customer = Customer.from_input(body.get('customer_name'), body.get('customer_contact'))
    order = sync.create_order(lines, customer)
    return Response(status_code=http201, body={'message': 'Order successfully created', 'order': order.to_ui()})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_update_order_status(request, sync, order_id) -> Response:
    policy.check(request.auth_result['role'], policy.MANAGE_ORDERS)
    new_status = utils_data.parse_raw_body(request).get('status')
    order = sync.update_order_status(order_id, new_status)
    return Response(status_code=http200, body={'message': f'Order status updated to {order.status}',
                                               'order': order.to_ui()})
