"""
Client side projection of the menu and the orders.

AppState is owned by exactly one SyncLayer: the layer is the only writer, everything
else reads the tuples it exposes. Every mutation goes to the store first and touches
the projection only after the store acknowledged it.
"""
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Tuple

from chalicelib.base_class_entity import utc_now
from chalicelib.constants.constants import LIVE_REFRESH_SECONDS
from chalicelib.menu_items import MenuCatalog, MenuItem
from chalicelib.orders import Customer, Order, OrderFilter, OrderLifecycle, filter_orders, to_utc_datetime
from chalicelib.utils import exceptions
from chalicelib.utils.logger import logger, log_exception

EVENT_MENU_REFRESHED = 'menu-refreshed'
EVENT_ORDERS_REFRESHED = 'orders-refreshed'
EVENT_MENU_ITEM_ADDED = 'menu-item-added'
EVENT_MENU_ITEM_UPDATED = 'menu-item-updated'
EVENT_MENU_ITEM_DELETED = 'menu-item-deleted'
EVENT_ORDER_CREATED = 'order-created'
EVENT_ORDER_STATUS_UPDATED = 'order-status-updated'

# A refresh that raced with a write is fetched again at most this many times
MAX_REFRESH_ATTEMPTS = 3


def _menu_sort_key(item: MenuItem):
    return (item.name or '').lower(), item.id_


class AppState:

    def __init__(self):
        self._lock = threading.RLock()
        self._menu_items: List[MenuItem] = []
        self._orders: List[Order] = []
        self._in_flight = 0
        self.last_error: Optional[Exception] = None
        self.last_refresh: Optional[str] = None

    @property
    def menu_items(self) -> Tuple[MenuItem, ...]:
        with self._lock:
            return tuple(self._menu_items)

    @property
    def orders(self) -> Tuple[Order, ...]:
        with self._lock:
            return tuple(self._orders)

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._in_flight > 0

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                'menu_items': len(self._menu_items),
                'orders': len(self._orders),
                'loading': self._in_flight > 0,
                'last_error': str(self.last_error) if self.last_error else None,
                'last_refresh': self.last_refresh
            }


class SyncLayer:

    def __init__(self, state: AppState, catalog: Optional[MenuCatalog] = None,
                 lifecycle: Optional[OrderLifecycle] = None):
        self.state = state
        self.catalog = catalog or MenuCatalog()
        self.lifecycle = lifecycle or OrderLifecycle()
        self._observers: List[Callable] = []
        self._observers_lock = threading.Lock()
        self._writes = {'menu': 0, 'orders': 0}

    # observers
    def subscribe(self, callback: Callable[[str, object], None]) -> Callable[[], None]:
        """
        callback(event, payload) is called after every successful mutation or refresh
        :return:
        function removing the subscription
        """
        with self._observers_lock:
            self._observers.append(callback)

        def unsubscribe():
            with self._observers_lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, event: str, payload=None):
        with self._observers_lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(event, payload)
            except Exception as error:
                log_exception(error, status_code=500, msg=f'_notify ::: observer failed on {event=}')

    @contextmanager
    def _in_flight(self, operation: str):
        with self.state._lock:
            self.state._in_flight += 1
        logger.debug(f'{operation} ::: started, loading=True')
        try:
            yield
        except Exception as error:
            with self.state._lock:
                self.state.last_error = error
            logger.warning(f'{operation} ::: failed, local state kept, {error=}')
            raise
        finally:
            with self.state._lock:
                self.state._in_flight -= 1
            logger.debug(f'{operation} ::: finished')

    # fetches
    def load(self):
        """
        Initial snapshot of both collections
        """
        self.refresh_menu()
        self.refresh_orders()

    def _writes_seen(self, collection: str) -> int:
        with self.state._lock:
            return self._writes[collection]

    def _apply_if_unchanged(self, collection: str, writes_before: int, snapshot: List,
                            apply: Callable[[List], None]) -> bool:
        """
        Applies a fetched snapshot unless a write was acknowledged after writes_before was read
        :return:
        True if the snapshot was applied
        """
        with self.state._lock:
            if self._writes[collection] != writes_before:
                return False
            apply(snapshot)
            self.state.last_error = None
            self.state.last_refresh = utc_now()
            return True

    def _refresh(self, collection: str, fetch: Callable[[], List],
                 apply: Callable[[List], None]) -> Optional[List]:
        for attempt in range(1, MAX_REFRESH_ATTEMPTS + 1):
            writes_before = self._writes_seen(collection)
            snapshot = fetch()
            if self._apply_if_unchanged(collection, writes_before, snapshot, apply):
                return snapshot
            logger.info(f'_refresh ::: {collection} changed while fetching, fetching again ({attempt=})')
        error = exceptions.PersistenceFailure(f'{collection} kept changing while refreshing, local state kept')
        with self.state._lock:
            self.state.last_error = error
        logger.warning(f'_refresh ::: {error}')
        return None

    def refresh_menu(self) -> List[MenuItem]:
        with self._in_flight('refresh_menu'):
            items = self._refresh('menu', self.catalog.list_items, self._apply_menu_items)
        if items is None:
            return list(self.state.menu_items)
        self._notify(EVENT_MENU_REFRESHED, items)
        return items

    def refresh_orders(self) -> List[Order]:
        with self._in_flight('refresh_orders'):
            orders = self._refresh('orders', self.lifecycle.list_orders, self._apply_orders)
        if orders is None:
            return list(self.state.orders)
        self._notify(EVENT_ORDERS_REFRESHED, orders)
        return orders

    def _apply_menu_items(self, items: List[MenuItem]):
        with self.state._lock:
            self.state._menu_items = sorted(items, key=_menu_sort_key)

    def _apply_orders(self, orders: List[Order]):
        with self.state._lock:
            self.state._orders = filter_orders(orders)

    # menu mutations
    def add_menu_item(self, data: Dict) -> MenuItem:
        with self._in_flight('add_menu_item'):
            menu_item = self.catalog.add_item(data)
            with self.state._lock:
                self._writes['menu'] += 1
                self.state._menu_items = sorted([*self.state._menu_items, menu_item], key=_menu_sort_key)
        self._notify(EVENT_MENU_ITEM_ADDED, menu_item)
        return menu_item

    def update_menu_item(self, menu_item_id: str, updates: Dict) -> MenuItem:
        with self._in_flight('update_menu_item'):
            menu_item = self.catalog.update_item(menu_item_id, updates)
            with self.state._lock:
                self._writes['menu'] += 1
                others = [item for item in self.state._menu_items if item.id_ != menu_item_id]
                self.state._menu_items = sorted([*others, menu_item], key=_menu_sort_key)
        self._notify(EVENT_MENU_ITEM_UPDATED, menu_item)
        return menu_item

    def delete_menu_item(self, menu_item_id: str) -> None:
        with self._in_flight('delete_menu_item'):
            self.catalog.delete_item(menu_item_id)
            with self.state._lock:
                self._writes['menu'] += 1
                self.state._menu_items = [item for item in self.state._menu_items if item.id_ != menu_item_id]
        self._notify(EVENT_MENU_ITEM_DELETED, menu_item_id)

    # order mutations
    def create_order(self, lines: List, customer: Optional[Customer] = None) -> Order:
        with self._in_flight('create_order'):
            order = self.lifecycle.create_order(lines, customer)
            with self.state._lock:
                self._writes['orders'] += 1
                self.state._orders = [order, *[o for o in self.state._orders if o.id_ != order.id_]]
        self._notify(EVENT_ORDER_CREATED, order)
        return order

    def update_order_status(self, order_id: str, new_status: str) -> Order:
        with self._in_flight('update_order_status'):
            order = self.lifecycle.update_status(order_id, new_status)
            with self.state._lock:
                self._writes['orders'] += 1
                self._replace_order(order)
        self._notify(EVENT_ORDER_STATUS_UPDATED, order)
        return order

    def _replace_order(self, order: Order):
        """
        Last acknowledged write wins: an older copy never replaces a newer one
        """
        orders = list(self.state._orders)
        for index, current in enumerate(orders):
            if current.id_ == order.id_:
                if to_utc_datetime(current.updated_at) <= to_utc_datetime(order.updated_at):
                    orders[index] = order
                break
        else:
            orders = filter_orders([*orders, order])
        self.state._orders = orders

    # reads
    def list_menu_items(self) -> Tuple[MenuItem, ...]:
        return self.state.menu_items

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        return filter_orders(self.state.orders, order_filter)

    def live_orders_task(self, interval: float = LIVE_REFRESH_SECONDS,
                         on_update: Optional[Callable[[List[Order]], None]] = None) -> 'RefreshTask':
        """
        Polling for live views. The fetched snapshot is applied only while the task runs
        and only if no order write was acknowledged during the fetch
        """

        def fetch() -> Tuple[int, List[Order]]:
            writes_before = self._writes_seen('orders')
            return writes_before, self.lifecycle.list_orders()

        def apply(result: Tuple[int, List[Order]]) -> bool:
            writes_before, orders = result
            if not self._apply_if_unchanged('orders', writes_before, orders, self._apply_orders):
                logger.info('live_orders_task ::: orders changed while fetching, snapshot skipped until next poll')
                return False
            self._notify(EVENT_ORDERS_REFRESHED, orders)
            if on_update is not None:
                on_update(orders)
            return True

        def record_error(error: Exception):
            with self.state._lock:
                self.state.last_error = error

        return RefreshTask(fetch=fetch, apply=apply, on_error=record_error,
                           interval=interval, name='live-orders')


class RefreshTask:
    """
    Cancellable polling bound to the lifetime of a view: start() when it becomes
    visible, stop() when it goes away. A fetch still running at stop() is dropped,
    acknowledged writes are never touched
    """

    def __init__(self, fetch: Callable[[], object], apply: Callable[[object], None],
                 interval: float = LIVE_REFRESH_SECONDS, on_error: Optional[Callable[[Exception], None]] = None,
                 name: str = 'refresh'):
        if interval <= 0:
            raise ValueError('interval must be positive')
        self.fetch = fetch
        self.apply = apply
        self.interval = interval
        self.on_error = on_error
        self.name = name
        self._lock = threading.Lock()
        self._generation = 0
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._stop_event is not None and not self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self._stop_event is not None and not self._stop_event.is_set():
                return
            self._generation += 1
            self._stop_event = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._generation, self._stop_event),
                                            name=f'{self.name}-{self._generation}', daemon=True)
            self._thread.start()
        logger.info(f'start ::: {self.name} polling every {self.interval}s')

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            if self._stop_event is None:
                return
            self._generation += 1
            self._stop_event.set()
            thread = self._thread
        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info(f'stop ::: {self.name} stopped')

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _run(self, generation: int, stop_event: threading.Event):
        while not stop_event.is_set():
            self.run_once(generation)
            stop_event.wait(self.interval)

    def run_once(self, generation: Optional[int] = None) -> bool:
        """
        One fetch/apply cycle. apply runs outside the task lock and may stop the task,
        returning False from it marks the result as not applied
        :return:
        True if the fetched result was applied
        """
        generation = self._generation if generation is None else generation
        try:
            result = self.fetch()
        except Exception as error:
            log_exception(error, status_code=503, msg=f'run_once ::: {self.name} refresh failed, will retry')
            if self.on_error is not None and self._is_current(generation):
                self.on_error(error)
            return False
        with self._lock:
            if generation != self._generation:
                logger.info(f'run_once ::: {self.name} stopped while fetching, result dropped')
                return False
        return self.apply(result) is not False

