"""
Setting Domain Models

Author: TM3
Date: 2026-02-13
"""
from pydantic import BaseModel
from typing import Any, Optional, Dict


class SettingValue(BaseModel):
    value: Any
    group: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None


class SettingsImport(BaseModel):
    data: str
    overwrite: bool = False


class BulkSettings(BaseModel):
    settings: Dict[str, Any]
