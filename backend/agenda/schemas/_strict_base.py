"""Pydantic bases shared by the agenda request and response models."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Plain response payloads built field by field; unknown keys are a bug."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Client payloads: unknown fields are rejected with a 422 and strings are stripped."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)


class StandardizedModel(BaseModel):
    """Responses validated straight from ORM rows, enums emitted as their values."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)
