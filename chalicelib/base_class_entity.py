from datetime import datetime, timezone
from typing import Tuple, Dict, List, Optional

from chalicelib.constants.substitute_keys import from_db, to_db
from chalicelib.utils import db as utils_db
from chalicelib.utils import exceptions
from chalicelib.utils.data import substitute_keys
from chalicelib.utils.logger import logger


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='microseconds')


class EntityBase:
    pk = None
    sk = None

    required_immutable_fields_validation = {}
    required_mutable_fields_validation = {}
    optional_fields_validation = {}

    def __init__(self, id_):
        self.id_: str = id_
        self.record_type: str = ''
        self.db_record: Dict = {}

    def _get_pk_sk(self) -> Tuple[str, str]:
        """
        Should be re-implemented in each child class
        :return:
        partkey, sortkey of db item for child
        """
        return self.pk, self.sk

    @staticmethod
    def _record_to_kwargs(record: Dict) -> Dict:
        item = dict(record)
        substitute_keys(dict_to_process=item, base_keys=from_db)
        item['id_'] = item.pop('id', None)
        return item

    @classmethod
    def from_db_record(cls, record: Dict):
        return cls(**cls._record_to_kwargs(record))

    def _get_db_item(self) -> Dict:
        item = self._record_to_kwargs(utils_db.get_db_item(*self._get_pk_sk()))
        item['id_'] = item['id_'] or self.id_
        return item

    def _to_dict(self) -> Dict:
        """
        Should be re-implemented in each child class
        :return:
        dict of item's attributes
        """
        return {
            'id_': self.id_
        }

    def _init_db_record(self) -> None:
        """
        New DB record initialization
        :return:
        None
        """
        pk, sk = self._get_pk_sk()
        self.db_record = {
            'partkey': pk,
            'sortkey': sk,
            'record_type': self.record_type,
            **self._to_dict()
        }
        self.db_record = {key: value for key, value in self.db_record.items() if value is not None}
        substitute_keys(dict_to_process=self.db_record, base_keys=to_db)

    def _validate_fields(self, validation_dict: Dict, skip_missing: bool) -> Dict[str, str]:
        errors = {}
        for key, validator_func in validation_dict.items():
            value = self.db_record.get(to_db.get(key, key))
            if value is None and skip_missing:
                continue
            if validator_func(value) is not True:
                errors[key] = f'Validation error occurred while validating the field={key}'
        return errors

    def _validate_mandatory_fields(self):
        """
        Validates mandatory fields if all fields have correct type to put to db
        Raise ValidationError in case if a field is not valid
        :return:
        None
        """
        errors = self._validate_fields({
            **self.required_immutable_fields_validation,
            **self.required_mutable_fields_validation
        }, skip_missing=False)
        if errors:
            logger.error(f"_validate_mandatory_fields ::: {self.record_type=} {errors=}")
            raise exceptions.ValidationError(f'{self.record_type} record is not valid', fields=errors)

    def _validate_optional_fields(self):
        """
        Validates optional fields, absent fields are fine
        Raise ValidationError in case if a field is not valid
        :return:
        None
        """
        errors = self._validate_fields(self.optional_fields_validation, skip_missing=True)
        if errors:
            logger.error(f"_validate_optional_fields ::: {self.record_type=} {errors=}")
            raise exceptions.ValidationError(f'{self.record_type} record is not valid', fields=errors)

    def _get_validated_update_dict(self, fields: Optional[List[str]] = None) -> Dict:
        """
        Validates fields for update
        Delete field if it is not valid
        :return:
        Clean dict for update
        (all invalid fields will be automatically excluded)
        """
        update_dict = self._to_dict()
        clean_dict = {}
        validation_dict = {**self.required_mutable_fields_validation, **self.optional_fields_validation}
        for key, value in update_dict.items():
            if fields is not None and key not in fields:
                continue
            if key in validation_dict and validation_dict[key](value) is True:
                clean_dict[key] = value
            elif key in validation_dict:
                logger.warning(f'_get_validated_update_dict ::: {key=}, {value=} is not valid, '
                               f'removing from update dict..')
        return clean_dict

    def _create_db_record(self, overwrite: bool = False) -> None:
        """
        Creates entity db record. RecordExists is raised when a record with the same key
        is already stored, unless overwrite is set
        :return:
        None
        """
        self._init_db_record()
        self._validate_mandatory_fields()
        self._validate_optional_fields()
        utils_db.put_db_record(self.db_record, must_not_exist=not overwrite)
        logger.info(f"_create_db_record ::: {self.record_type=} {self.id_=} {self.db_record.get('partkey')=} "
                    f"{self.db_record.get('sortkey')=} successfully created")

    def _update_fields_whitelist(self) -> List:
        return [to_db.get(key, key) for key in
                [*self.required_mutable_fields_validation.keys(), *self.optional_fields_validation.keys()]]

    def _update_db_record(self, fields: Optional[List[str]] = None) -> Dict:
        """
        Updates entity db record, the record must already exist
        :return:
        updated db record
        """
        pk, sk = self._get_pk_sk()
        update_dict = self._get_validated_update_dict(fields)
        substitute_keys(dict_to_process=update_dict, base_keys=to_db)
        updated = utils_db.update_db_record(
            key={'partkey': pk, 'sortkey': sk},
            update_body=update_dict,
            allowed_attrs_to_update=self._update_fields_whitelist(),
            allowed_attrs_to_delete=[]
        )
        logger.info(f"_update_db_record ::: {self.record_type=} "
                    f"{self.id_=} {pk=} {sk=} successfully updated")
        return updated

    def _delete_db_record(self) -> Dict:
        pk, sk = self._get_pk_sk()
        deleted = utils_db.delete_db_record({'partkey': pk, 'sortkey': sk}, must_exist=True)
        logger.info(f"_delete_db_record ::: {self.record_type=} {self.id_=} {pk=} {sk=} successfully deleted")
        return deleted

    def _to_ui(self) -> Dict:
        item = self._to_dict()
        substitute_keys(dict_to_process=item, base_keys=from_db)
        return item
