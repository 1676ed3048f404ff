"""
Base model definitions for SqlGate.

Provides the common base class for all wire-facing data models.
"""

from typing import Any

from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict
from pydantic.alias_generators import to_camel


class BaseModel(PydanticBaseModel):
    """
    Base model with common configuration for all SqlGate models.

    Features:
    - camelCase field names on the wire, snake_case in Python
    - JSON serialization support
    - Validation on assignment
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        arbitrary_types_allowed=True,
        str_strip_whitespace=True,
    )

    def to_dict(self, exclude_none: bool = True) -> dict[str, Any]:
        """Convert model to a JSON-compatible dictionary with wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)

    def to_json(self) -> str:
        """Convert model to JSON string."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
