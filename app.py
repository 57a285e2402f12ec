from chalice import Chalice

from chalicelib import auth, menu_items, orders, reports, settings, users
from chalicelib.sync import AppState, SyncLayer

app = Chalice(app_name='restaurant-pos')

app.debug = True

# The only writer of app_state is sync_layer
app_state = AppState()
sync_layer = SyncLayer(app_state)


@app.route('/health-check', methods=['GET'], cors=True)
def health_check():
    return {'health': 'check'}


# COGNITO TRIGGERS AND SEEDING
@app.lambda_function(name='cognito_post_confirmation')
def cognito_post_confirmation(event, context):
    return auth.cognito_post_confirmation(event)


@app.lambda_function(name='seed_demo_users')
def seed_demo_users(event, context):
    return {'profiles': [profile.to_ui() for profile in auth.seed_demo_users()]}


@app.lambda_function(name='seed_menu_items')
def seed_menu_items(event, context):
    return {'menu_items': [item.to_ui() for item in auth.seed_menu_items(sync_layer.catalog)]}


# AUTH
@app.route('/auth/login', methods=['POST'], cors=True)
def login():
    return auth.endpoint_login(app.current_request)


@app.route('/auth/signup', methods=['POST'], cors=True)
def signup():
    """
    role can't be chosen at sign up, every new account starts as cashier
    """
    return auth.endpoint_signup(app.current_request)


@app.route('/auth/refresh', methods=['POST'], cors=True)
def refresh_session():
    return auth.endpoint_refresh_session(app.current_request)


@app.route('/auth/logout', methods=['POST'], cors=True)
def logout():
    return auth.endpoint_logout(app.current_request)


@app.route('/navigation', methods=['GET'], cors=True)
def navigation():
    """
    route guard, ?path=/menu
    """
    return auth.endpoint_navigation(app.current_request)


# USERS
@app.route('/users/me', methods=['GET'], cors=True)
def get_current_user():
    return users.endpoint_get_current_user(app.current_request)


@app.route('/users', methods=['GET'], cors=True)
def get_users():
    """
    admin operation
    """
    return users.endpoint_get_users(app.current_request)


@app.route('/users/{user_id}/role', methods=['PUT'], cors=True)
def update_user_role(user_id):
    """
    admin operation
    """
    return users.endpoint_update_user_role(app.current_request, user_id)


# MENU ITEMS
@app.route('/menu-items', methods=['GET'], cors=True)
def get_menu_items():
    return menu_items.endpoint_get_menu_items(app.current_request, sync_layer)


@app.route('/menu-items', methods=['POST'], cors=True)
def create_menu_item():
    """
    admin and manager operation
    """
    return menu_items.endpoint_create_menu_item(app.current_request, sync_layer)


@app.route('/menu-items/{menu_item_id}', methods=['PUT'], cors=True)
def update_menu_item(menu_item_id):
    """
    admin and manager operation
    """
    return menu_items.endpoint_update_menu_item(app.current_request, sync_layer, menu_item_id)


@app.route('/menu-items/{menu_item_id}', methods=['DELETE'], cors=True)
def delete_menu_item(menu_item_id):
    """
    admin and manager operation, hard delete
    """
    return menu_items.endpoint_delete_menu_item(app.current_request, sync_layer, menu_item_id)


# ORDERS
@app.route('/orders', methods=['GET'], cors=True)
def get_orders():
    """
    ?start=&end=&status=&search=&order=asc
    """
    return orders.endpoint_get_orders(app.current_request, sync_layer)


@app.route('/orders', methods=['POST'], cors=True)
def create_order():
    """
    admin and cashier operation
    """
    return orders.endpoint_create_order(app.current_request, sync_layer)


@app.route('/orders/{order_id}', methods=['GET'], cors=True)
def get_order(order_id):
    return orders.endpoint_get_order(app.current_request, sync_layer, order_id)


@app.route('/orders/{order_id}/status', methods=['PUT'], cors=True)
def update_order_status(order_id):
    return orders.endpoint_update_order_status(app.current_request, sync_layer, order_id)


# DASHBOARD AND REPORTS
@app.route('/dashboard', methods=['GET'], cors=True)
def get_dashboard():
    return reports.endpoint_get_dashboard(app.current_request, sync_layer)


@app.route('/reports/daily', methods=['GET'], cors=True)
def get_daily_report():
    return reports.endpoint_get_daily_report(app.current_request, sync_layer)


@app.route('/reports/live', methods=['GET'], cors=True)
def get_live_report():
    return reports.endpoint_get_live_report(app.current_request, sync_layer)


@app.route('/reports/orders', methods=['GET'], cors=True)
def get_order_report():
    return reports.endpoint_get_order_report(app.current_request, sync_layer)


@app.route('/reports/{report_type}/csv', methods=['GET'], cors=True)
def download_report(report_type):
    """
    order, sales and user reports
    """
    return reports.endpoint_download_report(app.current_request, sync_layer, report_type)


# SETTINGS
@app.route('/settings', methods=['GET'], cors=True)
def get_settings():
    return settings.endpoint_get_settings(app.current_request)


@app.route('/settings', methods=['PUT'], cors=True)
def update_settings():
    """
    admin operation
    """
    return settings.endpoint_update_settings(app.current_request)
