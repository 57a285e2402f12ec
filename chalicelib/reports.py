import csv
import io
from collections import Counter
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from chalice import Response

from chalicelib import policy, users
from chalicelib.constants.constants import WALK_IN_CUSTOMER, ROLE_ADMIN, ROLE_MANAGER
from chalicelib.constants.status_codes import http200
from chalicelib.orders import Order, OrderFilter, ORDER_STATUSES, STATUS_PENDING, STATUS_IN_PROGRESS, \
    STATUS_COMPLETED, STATUS_CANCELLED, to_utc_datetime
from chalicelib.utils import auth as utils_auth, app as utils_app, exceptions
from chalicelib.utils.logger import logger

ZERO = Decimal('0.00')

REPORT_ORDER = 'order'
REPORT_SALES = 'sales'
REPORT_USER = 'user'

ORDER_REPORT_HEADERS = ['Order ID', 'Date', 'Customer', 'Items', 'Total Amount', 'Status']
SALES_REPORT_HEADERS = ['Order ID', 'Date', 'Customer', 'Amount', 'Status']
USER_REPORT_HEADERS = ['Email', 'Role', 'Created At']

REPORT_ACTIONS = {
    REPORT_ORDER: policy.VIEW_REPORTS,
    REPORT_SALES: policy.VIEW_REPORTS,
    REPORT_USER: policy.MANAGE_USERS,
}


def _sum(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO).quantize(Decimal('1.00'))


def order_statistics(orders: Sequence[Order]) -> Dict:
    """
    Revenue and average count only completed orders
    """
    completed = [order for order in orders if order.status == STATUS_COMPLETED]
    revenue = _sum(order.total_amount for order in completed)
    return {
        'total_orders': len(orders),
        'completed_orders': len(completed),
        'total_revenue': revenue,
        'average_order_value': (revenue / len(completed)).quantize(Decimal('1.00')) if completed else ZERO,
        'completion_rate': round(len(completed) * 100 / len(orders)) if orders else 0
    }


def sales_total(orders: Sequence[Order]) -> Decimal:
    return _sum(order.total_amount for order in orders if order.status != STATUS_CANCELLED)


def status_breakdown(orders: Sequence[Order], skip_empty: bool = False) -> Dict[str, int]:
    counts = Counter(order.status for order in orders)
    breakdown = {status: counts.get(status, 0) for status in ORDER_STATUSES}
    if skip_empty:
        return {status: count for status, count in breakdown.items() if count}
    return breakdown


def item_popularity(orders: Sequence[Order], limit: int = 5,
                    statuses: Sequence[str] = (STATUS_IN_PROGRESS, STATUS_COMPLETED)) -> List[Dict]:
    """
    Best sellers by quantity, items grouped by their name at ordering time
    """
    totals: Dict[str, Dict] = {}
    for order in orders:
        if order.status not in statuses:
            continue
        for line in order.items:
            entry = totals.setdefault(line.name, {'name': line.name, 'count': 0, 'revenue': ZERO})
            entry['count'] += line.quantity
            entry['revenue'] += line.subtotal
    ranked = sorted(totals.values(), key=lambda entry: (-entry['count'], entry['name']))
    return ranked[:limit]


def hourly_revenue(orders: Sequence[Order]) -> List[Dict]:
    """
    Completed revenue in 24 one-hour buckets (UTC)
    """
    buckets = [ZERO] * 24
    for order in orders:
        if order.status == STATUS_COMPLETED:
            buckets[to_utc_datetime(order.created_at).hour] += order.total_amount
    return [{'hour': f'{hour}:00', 'revenue': revenue} for hour, revenue in enumerate(buckets)]


def todays_orders(orders: Sequence[Order], today: Optional[date] = None) -> List[Order]:
    today = today or datetime.now(timezone.utc).date()
    start = to_utc_datetime(today)
    return [order for order in orders if to_utc_datetime(order.created_at) >= start]


def live_statistics(orders: Sequence[Order], today: Optional[date] = None) -> Dict:
    orders = todays_orders(orders, today)
    completed = [order for order in orders if order.status == STATUS_COMPLETED]
    revenue = _sum(order.total_amount for order in completed)
    return {
        'total_orders': len(orders),
        'pending_count': sum(1 for order in orders if order.status == STATUS_PENDING),
        'in_progress_count': sum(1 for order in orders if order.status == STATUS_IN_PROGRESS),
        'completed_count': len(completed),
        'total_revenue': revenue,
        'average_order_value': (revenue / len(completed)).quantize(Decimal('1.00')) if completed else ZERO,
        'status_breakdown': status_breakdown(orders, skip_empty=True),
        'popular_items': item_popularity(orders, statuses=(STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)),
        'recent_orders': [order.to_ui() for order in orders[:10]]
    }


def daily_report(orders: Sequence[Order]) -> Dict:
    return {
        'statistics': order_statistics(orders),
        'popular_items': item_popularity(orders),
        'status_breakdown': status_breakdown(orders),
        'hourly_revenue': hourly_revenue(orders),
        'orders': [order.to_ui() for order in orders]
    }


def dashboard_summary(role: str, orders: Sequence[Order], menu_items: Sequence) -> Dict:
    """
    What each role sees first: admin gets the totals, manager the kitchen queue,
    cashier the recent non-cancelled orders
    """
    breakdown = status_breakdown(orders)
    if role == ROLE_ADMIN:
        return {
            'role': role,
            'total_orders': len(orders),
            'completed_orders': breakdown[STATUS_COMPLETED],
            'pending_orders': breakdown[STATUS_PENDING],
            'total_revenue': sales_total(orders),
            'menu_items': len(menu_items),
            'categories': dict(Counter(item.category for item in menu_items)),
            'recent_orders': [order.to_ui() for order in orders[:5]]
        }
    if role == ROLE_MANAGER:
        return {
            'role': role,
            'status_breakdown': breakdown,
            'active_orders': [order.to_ui() for order in orders
                              if order.status in (STATUS_PENDING, STATUS_IN_PROGRESS)]
        }
    recent = [order for order in orders if order.status != STATUS_CANCELLED][:10]
    return {
        'role': role,
        'pending_orders': [order.to_ui() for order in recent if order.status == STATUS_PENDING],
        'in_progress_orders': [order.to_ui() for order in recent if order.status == STATUS_IN_PROGRESS],
        'completed_orders': [order.to_ui() for order in recent if order.status == STATUS_COMPLETED][:5]
    }


# CSV export
def to_csv(headers: List[str], rows: Iterable[Sequence]) -> str:
    """
    Header row then one line per row, fields with a comma are quoted
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n', quoting=csv.QUOTE_MINIMAL)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([str(field) for field in row])
    content = buffer.getvalue()
    return content[:-1] if content.endswith('\n') else content


def report_filename(report_type: str, day: Optional[date] = None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f'{report_type}-report-{day.isoformat()}.csv'


def _order_date(order: Order) -> str:
    return to_utc_datetime(order.created_at).date().isoformat()


def order_report_rows(orders: Sequence[Order]) -> List[List]:
    return [[order.id_, _order_date(order), order.customer_name or WALK_IN_CUSTOMER, len(order.items),
             f'{order.total_amount:.2f}', order.status] for order in orders]


def sales_report_rows(orders: Sequence[Order]) -> List[List]:
    return [[order.id_, _order_date(order), order.customer_name or WALK_IN_CUSTOMER,
             f'{order.total_amount:.2f}', order.status] for order in orders]


def user_report_rows(profiles: Sequence[users.Profile]) -> List[List]:
    return [[profile.email, profile.role, profile.created_at] for profile in profiles]


def export_csv(report_type: str, orders: Sequence[Order] = (), profiles: Sequence = ()) -> str:
    if report_type == REPORT_ORDER:
        return to_csv(ORDER_REPORT_HEADERS, order_report_rows(orders))
    if report_type == REPORT_SALES:
        return to_csv(SALES_REPORT_HEADERS, sales_report_rows(orders))
    if report_type == REPORT_USER:
        return to_csv(USER_REPORT_HEADERS, user_report_rows(profiles))
    raise exceptions.ValidationError(f'Unknown report {report_type}',
                                     fields={'report_type': f"Report must be one of: {', '.join(REPORT_ACTIONS)}"})


def order_filter_from_query(query_params: Optional[Dict]) -> OrderFilter:
    qp = query_params or {}
    return OrderFilter(start=qp.get('start'), end=qp.get('end'), status=qp.get('status'), search=qp.get('search'),
                       ascending=qp.get('order') == 'asc')


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_dashboard(request, sync) -> Response:
    role = request.auth_result['role']
    policy.check(role, policy.VIEW_DASHBOARD)
    sync.load()
    return Response(status_code=http200,
                    body=dashboard_summary(role, sync.list_orders(), sync.list_menu_items()))


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_daily_report(request, sync) -> Response:
    policy.check(request.auth_result['role'], policy.VIEW_REPORTS)
    day = (request.query_params or {}).get('date') or datetime.now(timezone.utc).date().isoformat()
    orders = sync.lifecycle.fetch_orders_by_date_range(day, day)
    logger.info(f"endpoint_get_daily_report ::: {day=} orders={len(orders)}")
    return Response(status_code=http200, body={'date': day, **daily_report(orders)})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_live_report(request, sync) -> Response:
    policy.check(request.auth_result['role'], policy.VIEW_REPORTS)
    sync.refresh_orders()
    return Response(status_code=http200, body={**live_statistics(sync.list_orders()),
                                               'last_refresh': sync.state.last_refresh})


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_get_order_report(request, sync) -> Response:
    policy.check(request.auth_result['role'], policy.VIEW_REPORTS)
    orders = sync.lifecycle.list_orders(order_filter_from_query(request.query_params))
    total = sales_total(orders)
    return Response(status_code=http200, body={
        'orders': [order.to_ui() for order in orders],
        'total_sales': total,
        'average_order_value': (total / len(orders)).quantize(Decimal('1.00')) if orders else ZERO
    })


@utils_app.request_exception_handler
@utils_app.log_start_finish
@utils_auth.authenticate
def endpoint_download_report(request, sync, report_type) -> Response:
    if report_type not in REPORT_ACTIONS:
        raise exceptions.ValidationError(f'Unknown report {report_type}', fields={'report_type': 'Unknown report'})
    policy.check(request.auth_result['role'], REPORT_ACTIONS[report_type])
    if report_type == REPORT_USER:
        qp = request.query_params or {}
        content = export_csv(report_type, profiles=users.list_profiles(search=qp.get('search'), role=qp.get('role')))
    else:
        content = export_csv(report_type, orders=sync.lifecycle.list_orders(
            order_filter_from_query(request.query_params)))
    filename = report_filename(report_type)
    logger.info(f"endpoint_download_report ::: {filename=} ready")
    return Response(status_code=http200, body=content, headers={
        'Content-Type': 'text/csv; charset=utf-8',
        'Content-Disposition': f'attachment; filename="{filename}"'
    })
