"""Base model configuration for parsed project configuration."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Base model with standard configuration."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)
