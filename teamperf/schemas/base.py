"""
Base Schema Classes for Pydantic Models

RULE: All schemas returned by the performance subsystem inherit from
BaseResponseSchema so they can be read from ORM rows and cached as JSON.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas.

    Features:
    - Enables from_attributes for ORM compatibility
    - Allow population by field name or alias
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )

    @property
    def is_empty(self) -> bool:
        """True when the result carries no activity worth reporting."""
        return False
