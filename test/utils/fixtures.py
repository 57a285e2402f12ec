import os
from typing import Dict

import pytest
from chalice.test import Client

import app as app_module
from chalicelib import identity
from chalicelib.constants.constants import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER
from chalicelib.sync import AppState, SyncLayer
from chalicelib.users import create_profile
from chalicelib.utils import db as utils_db
from chalicelib.utils.logger import logger
from test.utils.fake_identity import FakeDirectory
from test.utils.fake_table import FakeTable

PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

STAFF = {
    ROLE_ADMIN: 'user-admin-0001',
    ROLE_MANAGER: 'user-manager-0001',
    ROLE_CASHIER: 'user-cashier-0001',
}


def staff_email(role: str) -> str:
    return f'{role}@restaurant.com'


@pytest.fixture
def fake_table(request) -> FakeTable:
    table = FakeTable()
    previous = utils_db.use_table(table)
    request.addfinalizer(lambda: utils_db.use_table(previous))
    return table


@pytest.fixture
def directory(request) -> FakeDirectory:
    directory = FakeDirectory()
    previous = identity.use_identity_provider(directory.provider)
    request.addfinalizer(lambda: identity.use_identity_provider(previous))
    return directory


@pytest.fixture
def staff(fake_table, directory) -> Dict[str, str]:
    """
    admin, manager and cashier accounts with their profiles
    :return:
    role -> access token
    """
    tokens = {}
    for role, user_id in STAFF.items():
        directory.add_account(staff_email(role), user_id=user_id)
        create_profile(user_id, staff_email(role), role)
        tokens[role] = user_id
    fake_table.calls.clear()
    return tokens


@pytest.fixture
def sync(fake_table) -> SyncLayer:
    return SyncLayer(AppState())


@pytest.fixture
def chalice_client(fake_table, directory, monkeypatch) -> Client:
    monkeypatch.setattr(app_module, 'sync_layer', SyncLayer(AppState()))
    logger.debug(f"chalice_client ::: {PROJECT_DIR=}")
    with Client(app_module.app, stage_name='test', project_dir=PROJECT_DIR) as client:
        yield client
