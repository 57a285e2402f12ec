import os
from decimal import Decimal

ROLE_ADMIN = 'admin'
ROLE_MANAGER = 'manager'
ROLE_CASHIER = 'cashier'
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)

# Role a freshly confirmed account gets; only an admin can change it afterwards
DEFAULT_SIGNUP_ROLE = ROLE_CASHIER

DEFAULT_MENU_CATEGORIES = ['Burger', 'Pizza', 'Sides', 'Drinks', 'Dessert']

PLACEHOLDER_IMAGE_URL = 'https://placehold.co/300x300?text=No+Image'

DEFAULT_PROJECT_NAME = 'Indian Kitchen'
PROJECT_NAME_MAX_LENGTH = 40

WALK_IN_CUSTOMER = 'Walk-in'

LIVE_REFRESH_SECONDS = float(os.environ.get('LIVE_REFRESH_SECONDS', 30))

MONEY_QUANTUM = Decimal('1.00')

DEMO_USERS = [
    {'email': 'admin@gmail.com', 'password': '123456', 'role': ROLE_ADMIN},
    {'email': 'manager@gmail.com', 'password': '123456', 'role': ROLE_MANAGER},
    {'email': 'cashier@gmail.com', 'password': '123456', 'role': ROLE_CASHIER},
]

SAMPLE_MENU_ITEMS = [
    {
        'name': 'Classic Cheeseburger',
        'description': 'Juicy beef patty with melted cheese, lettuce, tomato, and special sauce',
        'price': Decimal('8.99'),
        'category': 'Burger',
        'image_url': 'https://images.unsplash.com/photo-1568901346375-23c9450c58cd?w=500'
    },
    {
        'name': 'Margherita Pizza',
        'description': 'Classic pizza with tomato sauce, mozzarella, and fresh basil',
        'price': Decimal('12.99'),
        'category': 'Pizza',
        'image_url': 'https://images.unsplash.com/photo-1604382354936-07c5d9983bd3?w=500'
    },
    {
        'name': 'French Fries',
        'description': 'Crispy golden fries served with ketchup',
        'price': Decimal('3.99'),
        'category': 'Sides',
        'image_url': 'https://images.unsplash.com/photo-1630384060421-cb20d0e0649d?w=500'
    },
    {
        'name': 'Chocolate Milkshake',
        'description': 'Rich and creamy chocolate milkshake topped with whipped cream',
        'price': Decimal('4.99'),
        'category': 'Drinks',
        'image_url': 'https://images.unsplash.com/photo-1572490122747-3968b75cc699?w=500'
    },
    {
        'name': 'Chicken Wings',
        'description': 'Spicy buffalo chicken wings served with blue cheese dip',
        'price': Decimal('9.99'),
        'category': 'Sides',
        'image_url': 'https://images.unsplash.com/photo-1567620832903-9fc6debc209f?w=500'
    },
    {
        'name': 'Chocolate Brownie',
        'description': 'Warm chocolate brownie with vanilla ice cream',
        'price': Decimal('5.99'),
        'category': 'Dessert',
        'image_url': 'https://images.unsplash.com/photo-1606313564200-e75d5e30476c?w=500'
    },
]
