"""Pydantic schemas for license management"""
from typing import Optional

from pydantic import BaseModel, Field


class ValidateLicenseRequest(BaseModel):
    license_key: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)


class GenerateLicenseRequest(BaseModel):
    user_no: Optional[str] = None
    user_name: Optional[str] = None


class LicenseKeyRequest(BaseModel):
    license_key: str = Field(..., min_length=1)


class UpdateLicenseRequest(BaseModel):
    license_key: str = Field(..., min_length=1)
    user_no: Optional[str] = None
    user_name: Optional[str] = None
