from datetime import date
from decimal import Decimal

import pytest as pytest

from chalicelib import reports
from chalicelib.orders import Order, OrderLineItem, OrderLifecycle, Customer, STATUS_PENDING, STATUS_IN_PROGRESS, \
    STATUS_COMPLETED, STATUS_CANCELLED
from chalicelib.users import Profile
from chalicelib.utils.exceptions import ValidationError
from test.utils.fixtures import fake_table, directory, staff, chalice_client
from test.utils.request_utils import make_request


def make_order(order_id, status, created_at, lines, customer_name=None) -> Order:
    items = [OrderLineItem(order_id=order_id, position=position, name=name, price=price, quantity=quantity)
             for position, (name, price, quantity) in enumerate(lines)]
    return Order(order_id, status=status, created_at=created_at, customer_name=customer_name, items=items,
                 total_amount=sum((item.subtotal for item in items), Decimal('0.00')))


ORDERS = [
    make_order('00000004', STATUS_PENDING, '2024-05-03T18:10:00.000000+00:00',
               [('French Fries', Decimal('3.99'), 2)], 'Dana'),
    make_order('00000003', STATUS_CANCELLED, '2024-05-03T13:00:00.000000+00:00',
               [('Margherita Pizza', Decimal('12.99'), 1)]),
    make_order('00000002', STATUS_COMPLETED, '2024-05-03T13:45:00.000000+00:00',
               [('Classic Cheeseburger', Decimal('8.99'), 1), ('French Fries', Decimal('3.99'), 1)], 'Smith, John'),
    make_order('00000001', STATUS_COMPLETED, '2024-05-03T09:15:00.000000+00:00',
               [('Classic Cheeseburger', Decimal('8.99'), 2)], 'Alice'),
]


def test_order_statistics_count_completed_revenue_only():
    assert reports.order_statistics(ORDERS) == {
        'total_orders': 4,
        'completed_orders': 2,
        'total_revenue': Decimal('30.96'),
        'average_order_value': Decimal('15.48'),
        'completion_rate': 50
    }


def test_order_statistics_without_orders():
    statistics = reports.order_statistics([])
    assert statistics['average_order_value'] == Decimal('0.00')
    assert statistics['completion_rate'] == 0


def test_sales_total_skips_cancelled():
    assert reports.sales_total(ORDERS) == Decimal('38.94')


def test_status_breakdown():
    assert reports.status_breakdown(ORDERS) == {STATUS_PENDING: 1, STATUS_IN_PROGRESS: 0, STATUS_COMPLETED: 2,
                                                STATUS_CANCELLED: 1}
    assert STATUS_IN_PROGRESS not in reports.status_breakdown(ORDERS, skip_empty=True)


def test_item_popularity():
    assert reports.item_popularity(ORDERS) == [
        {'name': 'Classic Cheeseburger', 'count': 3, 'revenue': Decimal('26.97')},
        {'name': 'French Fries', 'count': 1, 'revenue': Decimal('3.99')},
    ]
    assert reports.item_popularity(ORDERS, limit=1,
                                   statuses=(STATUS_PENDING, STATUS_COMPLETED))[0]['name'] == 'Classic Cheeseburger'


def test_hourly_revenue():
    buckets = reports.hourly_revenue(ORDERS)
    assert len(buckets) == 24
    assert buckets[9] == {'hour': '9:00', 'revenue': Decimal('17.98')}
    assert buckets[13] == {'hour': '13:00', 'revenue': Decimal('12.98')}
    assert buckets[18]['revenue'] == Decimal('0.00')


def test_live_statistics_use_only_todays_orders():
    yesterday = make_order('00000000', STATUS_COMPLETED, '2024-05-02T23:59:00.000000+00:00',
                           [('Chocolate Brownie', Decimal('5.99'), 1)])
    live = reports.live_statistics([*ORDERS, yesterday], today=date(2024, 5, 3))
    assert live['total_orders'] == 4
    assert live['pending_count'] == 1
    assert live['completed_count'] == 2
    assert live['total_revenue'] == Decimal('30.96')
    assert live['status_breakdown'] == {STATUS_PENDING: 1, STATUS_COMPLETED: 2, STATUS_CANCELLED: 1}
    assert [order['id'] for order in live['recent_orders']] == ['00000004', '00000003', '00000002', '00000001']


def test_dashboard_summary_per_role():
    admin = reports.dashboard_summary('admin', ORDERS, [])
    assert admin['total_revenue'] == Decimal('38.94')
    assert admin['pending_orders'] == 1

    manager = reports.dashboard_summary('manager', ORDERS, [])
    assert [order['id'] for order in manager['active_orders']] == ['00000004']

    cashier = reports.dashboard_summary('cashier', ORDERS, [])
    assert [order['id'] for order in cashier['completed_orders']] == ['00000002', '00000001']
    assert cashier['in_progress_orders'] == []


def test_to_csv_quotes_fields_with_commas():
    content = reports.to_csv(['Customer', 'Note'], [['Smith, John', 'say "hi"'], ['Alice', 'none']])
    assert content == 'Customer,Note\n"Smith, John","say ""hi"""\nAlice,none'


def test_report_filename():
    assert reports.report_filename('order', date(2024, 5, 3)) == 'order-report-2024-05-03.csv'
    assert reports.report_filename('user', date(2024, 12, 31)) == 'user-report-2024-12-31.csv'


def test_order_report_rows():
    content = reports.export_csv('order', orders=ORDERS[1:3])
    assert content.split('\n') == [
        'Order ID,Date,Customer,Items,Total Amount,Status',
        '00000003,2024-05-03,Walk-in,1,12.99,cancelled',
        '00000002,2024-05-03,"Smith, John",2,12.98,completed',
    ]


def test_user_report_rows():
    profile = Profile('user-1', email='cashier@restaurant.com', role='cashier',
                      created_at='2024-05-01T08:00:00.000000+00:00')
    assert reports.export_csv('user', profiles=[profile]) == \
           'Email,Role,Created At\ncashier@restaurant.com,cashier,2024-05-01T08:00:00.000000+00:00'


def test_unknown_report_type():
    with pytest.raises(ValidationError):
        reports.export_csv('inventory')


def test_download_order_report(chalice_client, staff):
    OrderLifecycle().create_order([{'name': 'French Fries', 'price': Decimal('3.99'), 'quantity': 1}],
                                  Customer('Smith, John'))
    response = make_request(chalice_client, '/reports/order/csv', token=staff['manager'])
    assert response.status_code == 200
    assert response.headers['Content-Type'].startswith('text/csv')
    assert response.headers['Content-Disposition'].startswith('attachment; filename="order-report-')
    lines = response.body.decode('utf-8').split('\n')
    assert lines[0] == 'Order ID,Date,Customer,Items,Total Amount,Status'
    assert '"Smith, John"' in lines[1]


def test_report_permissions(chalice_client, staff):
    assert make_request(chalice_client, '/reports/sales/csv', token=staff['cashier']).status_code == 403
    assert make_request(chalice_client, '/reports/user/csv', token=staff['manager']).status_code == 403
    users_csv = make_request(chalice_client, '/reports/user/csv', token=staff['admin'])
    assert users_csv.status_code == 200
    assert users_csv.body.decode('utf-8').count('\n') == 3
    assert make_request(chalice_client, '/reports/inventory/csv', token=staff['admin']).status_code == 400


def test_dashboard_endpoint(chalice_client, staff):
    OrderLifecycle().create_order([{'name': 'French Fries', 'price': Decimal('3.99'), 'quantity': 2}])
    admin = make_request(chalice_client, '/dashboard', token=staff['admin'])
    assert admin.status_code == 200
    assert admin.json_body['total_orders'] == 1
    assert admin.json_body['total_revenue'] == 7.98

    cashier = make_request(chalice_client, '/dashboard', token=staff['cashier'])
    assert cashier.json_body['role'] == 'cashier'
    assert len(cashier.json_body['pending_orders']) == 1


def test_daily_report_endpoint(chalice_client, staff):
    order = OrderLifecycle().create_order([{'name': 'French Fries', 'price': Decimal('3.99'), 'quantity': 1}])
    day = order.created_at[:10]
    response = make_request(chalice_client, '/reports/daily', token=staff['manager'], query={'date': day})
    assert response.status_code == 200
    assert response.json_body['date'] == day
    assert [o['id'] for o in response.json_body['orders']] == [order.id_]
    assert len(response.json_body['hourly_revenue']) == 24

    assert make_request(chalice_client, '/reports/daily', token=staff['cashier']).status_code == 403
