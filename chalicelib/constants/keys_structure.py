profiles_pk = 'profiles'
profiles_sk = '{user_id}'

menu_items_pk = 'menu_items'
menu_items_sk = '{menu_item_id}'

orders_pk = 'orders'
orders_sk = '{order_id}'

order_items_pk = 'order_items'
order_items_sk = '{order_id}_{position:03d}'
order_items_sk_prefix = '{order_id}_'

settings_pk = 'settings'
settings_sk = 'general'
