"""
Test Buddy - Common Schemas
Base model shared by every stored document type
"""
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from testbuddy.store.base import UNSET


class DocumentModel(BaseModel):
    """
    Stored documents keep camelCase field names; Python code uses
    snake_case attributes. Both spellings are accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
        validate_default=True,
    )

    def to_document(self, exclude: set[str] | None = None) -> dict[str, Any]:
        """
        Dump to the stored (camelCase) shape.

        Optional fields that were never set are emitted as ``UNSET`` so
        the sanitiser drops them instead of writing nulls.
        """
        data = self.model_dump(by_alias=True, exclude=exclude)
        for name, info in type(self).model_fields.items():
            alias = info.alias or name
            if alias in data and data[alias] is None and name not in self.model_fields_set:
                data[alias] = UNSET
        return data

    @classmethod
    def from_document(cls, data: dict[str, Any]):
        return cls.model_validate(data)
