"""
rijig_portal/models/common.py: Base types of the portal domain.
"""

from pydantic import BaseModel


class PortalBase(BaseModel):
    """Base pydantic model for portal schemas."""

    model_config = {"str_strip_whitespace": True}
