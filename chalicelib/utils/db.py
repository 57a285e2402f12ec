import functools
import os

import boto3 as boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from chalicelib.constants import substitute_keys
from chalicelib.utils import data
from chalicelib.utils import exceptions
from chalicelib.utils.boto_clients import aws_config_ddb
from chalicelib.utils.logger import logger, log_exception

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'

_TABLE = None


def persistence_guard(func):
    """
        should wrap every store call in the code,
        transport failures never leave this module as raw botocore errors
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f'{func.__name__}:: args={args}, kwargs={kwargs}')
        try:
            result = func(*args, **kwargs)
            logger.info(f'{func.__name__}:: SUCCESS')
            return result
        except exceptions.PersistenceFailure:
            raise
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == CONDITIONAL_CHECK_FAILED:
                raise exceptions.RecordNotFound(f'{func.__name__}: record does not exist') from e
            log_exception(e, status_code=503, msg=f'Got exception while trying to {func.__name__}: ')
            raise exceptions.PersistenceFailure(
                f"{func.__name__} failed: {e.response.get('Error', {}).get('Message', str(e))}") from e
        except BotoCoreError as e:
            log_exception(e, status_code=503, msg=f'Got exception while trying to {func.__name__}: ')
            raise exceptions.PersistenceFailure(f'{func.__name__} failed: {e}') from e

    return wrapper


def get_table(table_name: str) -> boto3.session.Session.resource:
    if os.environ.get('ENDPOINT_URL'):
        return boto3.resource('dynamodb', endpoint_url=os.environ.get('ENDPOINT_URL')).Table(table_name)
    return boto3.resource('dynamodb', config=aws_config_ddb).Table(table_name)


def get_gen_table():
    global _TABLE
    if _TABLE is None:
        _TABLE = get_table(os.environ.get('GEN_TABLE_NAME', 'restaurant-pos'))
    return _TABLE


def use_table(table):
    """
    Replaces the table every store call goes to, returns the previous one
    :return:
    previously used table (None if it was never initialised)
    """
    global _TABLE
    previous, _TABLE = _TABLE, table
    return previous


@persistence_guard
def put_db_record(item: dict, must_not_exist: bool = False):
    kwargs = {'Item': item}
    if must_not_exist:
        kwargs['ConditionExpression'] = Attr('partkey').not_exists()
    try:
        get_gen_table().put_item(**kwargs)
    except ClientError as e:
        if must_not_exist and e.response.get('Error', {}).get('Code') == CONDITIONAL_CHECK_FAILED:
            raise exceptions.RecordExists(
                f"put_db_record: {item.get('partkey')}/{item.get('sortkey')} already exists") from e
        raise


@persistence_guard
def update_db_record(key: dict, update_body: dict, allowed_attrs_to_update: list,
                     allowed_attrs_to_delete: list, must_exist: bool = True):
    data.substitute_keys(dict_to_process=update_body, base_keys=substitute_keys.to_db)
    set_expr, expr_attr_values, remove_expr = generate_update_expression(
        update_body=update_body,
        allowed_attrs_to_update=allowed_attrs_to_update,
        allowed_attrs_to_delete=allowed_attrs_to_delete
    )
    update_item_dict = {"Key": key, "ReturnValues": "ALL_NEW", }
    if must_exist:
        update_item_dict['ConditionExpression'] = Attr('partkey').exists()

    set_response = None
    if set_expr:
        set_item_dict = {
            **update_item_dict,
            "UpdateExpression": set_expr,
            "ExpressionAttributeValues": expr_attr_values
        }
        set_response = get_gen_table().update_item(**set_item_dict)

    remove_response = None
    if remove_expr:
        remove_item_dict = {
            **update_item_dict,
            "UpdateExpression": remove_expr
        }
        remove_response = get_gen_table().update_item(**remove_item_dict)

    return (remove_response or set_response or {}).get('Attributes')


def generate_update_expression(update_body: dict, allowed_attrs_to_update: list, allowed_attrs_to_delete: list):
    """
    Generate expressions to update and delete attributes.
    if a key of update_body is empty - the attribute is deleted, else - attribute is updated
    """
    expr_attr_values = {}
    set_expr = 'SET '
    remove_expr = 'REMOVE '
    return_value = [None, None, None]
    for field in allowed_attrs_to_update:
        field_value = update_body.get(field, None)
        if field_value is not None:
            # if field is in update_body but is equal to empty string, list etc. - delete field
            if field_value in ['', [], {}] and field in allowed_attrs_to_delete:
                remove_expr += f'{field}, '
            else:
                # if field is in update_body and has a real value - update field
                expr_attr_values[f':{field}'] = update_body.get(field)
                set_expr += f'{field}=:{field}, '
        else:
            continue

    if set_expr != 'SET ':
        return_value[0] = set_expr[:-2]
        return_value[1] = expr_attr_values

    if remove_expr != 'REMOVE ':
        return_value[2] = remove_expr[:-2]

    return return_value


@persistence_guard
def get_db_item(partkey, sortkey):
    result = get_gen_table().get_item(
        Key={
            'partkey': partkey,
            'sortkey': sortkey
        }
    )

    if 'Item' in result:
        return result['Item']
    else:
        logger.warning(f"get_db_item ::: record partkey={partkey} sortkey={sortkey} not found")
        raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')


@persistence_guard
def delete_db_record(key: dict, must_exist: bool = False):
    kwargs = {'Key': key, 'ReturnValues': 'ALL_OLD'}
    if must_exist:
        kwargs['ConditionExpression'] = Attr('partkey').exists()
    return get_gen_table().delete_item(**kwargs).get('Attributes')


@persistence_guard
def query_items_paginated(
        key_condition_expression,
        filter_expression=None,
        projection_expression=None,
        index_name=None,
        expr_attr_names=None,
        limit=None,
        start_key=None
):
    kwargs = {'KeyConditionExpression': key_condition_expression}
    if filter_expression:
        kwargs.update({'FilterExpression': filter_expression})

    if projection_expression:
        kwargs.update({'ProjectionExpression': projection_expression})

    if expr_attr_names:
        kwargs.update({'ExpressionAttributeNames': expr_attr_names})

    if limit:
        kwargs.update({'Limit': int(limit)})

    if index_name:
        kwargs.update({'IndexName': index_name})

    if start_key:
        kwargs.update({'ExclusiveStartKey': start_key})

    resp = get_gen_table().query(**kwargs)
    return resp['Items'], resp.get('LastEvaluatedKey')


def query_items_paged(key_condition_expression, filter_expression=None, projection_expression=None,
                      index_name=None, expr_attr_names=None):
    """ This method shall be used whenever you think the query will
        return more than 1mb of data at once"""
    all_items = []
    items, last_evaluated_key = query_items_paginated(
        key_condition_expression,
        filter_expression=filter_expression,
        projection_expression=projection_expression,
        index_name=index_name,
        expr_attr_names=expr_attr_names
    )
    all_items.extend(items)

    while last_evaluated_key is not None:
        items, last_evaluated_key = query_items_paginated(
            key_condition_expression,
            filter_expression=filter_expression,
            projection_expression=projection_expression,
            index_name=index_name,
            expr_attr_names=expr_attr_names,
            start_key=last_evaluated_key
        )
        all_items.extend(items)

    return all_items
