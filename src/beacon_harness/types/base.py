"""Reusable base models for harness data types."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    A base model that converts field names to camel case when serializing.

    For example, the field name `genesis_time` in a Python model will be
    represented as `genesisTime` when it is serialized to JSON.

    Node binaries emit camel-cased JSON, so parsing and persisting group
    descriptors goes through the same aliases.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_default=True,
    )


class FrozenModel(CamelModel):
    """An immutable model that ignores unknown fields from node output."""

    model_config = CamelModel.model_config | {
        "extra": "ignore",
        "frozen": True,
    }
