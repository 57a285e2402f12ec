from decimal import Decimal

import pytest as pytest

from chalicelib import settings
from chalicelib.constants.constants import DEFAULT_MENU_CATEGORIES, DEFAULT_PROJECT_NAME
from chalicelib.menu_items import MenuCatalog
from chalicelib.utils.exceptions import ValidationError
from test.utils.fixtures import fake_table, directory, staff, chalice_client
from test.utils.request_utils import make_request


def test_defaults_without_record(fake_table):
    current = settings.get_settings()
    assert current.project_name == DEFAULT_PROJECT_NAME
    assert current.menu_categories == DEFAULT_MENU_CATEGORIES
    assert fake_table.write_calls == []


def test_categories_from_environment(fake_table, monkeypatch):
    monkeypatch.setenv('MENU_CATEGORIES', 'Starters, Mains ,,Desserts')
    assert settings.get_categories() == ['Starters', 'Mains', 'Desserts']


def test_update_settings(fake_table):
    updated = settings.update_settings(project_name='  Spice Route ', menu_categories=['Burger', 'Tacos'])
    assert updated.project_name == 'Spice Route'
    assert updated.updated_at is not None

    stored = settings.get_settings()
    assert stored.project_name == 'Spice Route'
    assert stored.menu_categories == ['Burger', 'Tacos']


def test_blank_project_name_keeps_previous(fake_table):
    settings.update_settings(project_name='Spice Route')
    assert settings.update_settings(project_name='   ').project_name == 'Spice Route'


@pytest.mark.parametrize('changes, field', [
    ({'project_name': 'x' * 41}, 'project_name'),
    ({'menu_categories': []}, 'menu_categories'),
    ({'menu_categories': ['Burger', 'Burger']}, 'menu_categories'),
    ({'menu_categories': ['Burger', '']}, 'menu_categories'),
    ({'menu_categories': 'Burger'}, 'menu_categories'),
])
def test_invalid_settings(fake_table, changes, field):
    with pytest.raises(ValidationError) as error:
        settings.update_settings(**changes)
    assert field in error.value.fields
    assert fake_table.write_calls == []


def test_catalog_validates_against_current_categories(fake_table):
    settings.update_settings(menu_categories=['Tacos'])
    taco = MenuCatalog().add_item({'name': 'Al Pastor', 'description': 'Pork, pineapple', 'price': Decimal('3.50'),
                                   'category': 'Tacos'})
    assert taco.category == 'Tacos'
    with pytest.raises(ValidationError):
        MenuCatalog().add_item({'name': 'Burger', 'description': 'Beef', 'price': Decimal('8.99'),
                                'category': 'Burger'})


def test_settings_endpoints(chalice_client, staff):
    current = make_request(chalice_client, '/settings', token=staff['cashier'])
    assert current.status_code == 200
    assert current.json_body['project_name'] == DEFAULT_PROJECT_NAME

    denied = make_request(chalice_client, '/settings', 'PUT', token=staff['manager'],
                          json_body={'project_name': 'Spice Route'})
    assert denied.status_code == 403

    updated = make_request(chalice_client, '/settings', 'PUT', token=staff['admin'],
                           json_body={'project_name': 'Spice Route'})
    assert updated.status_code == 200
    assert updated.json_body['settings']['project_name'] == 'Spice Route'
    assert updated.json_body['settings']['menu_categories'] == DEFAULT_MENU_CATEGORIES
