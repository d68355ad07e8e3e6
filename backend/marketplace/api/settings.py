"""
API endpoints for store settings
"""
from typing import List

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from marketplace.core.exceptions import ApiError
from marketplace.domain.setting import SettingValue, SettingsImport, BulkSettings
from marketplace.services.settings_service import SettingsService

router = APIRouter()


@router.get("")
async def get_all_settings(include_private: bool = Query(True)):
    try:
        return {"status": "success", "data": SettingsService.get_all_settings(include_private)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting settings: {str(e)}")


@router.get("/public")
async def get_public_settings():
    try:
        return {"status": "success", "data": SettingsService.get_public_settings()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting public settings: {str(e)}")


@router.get("/groups")
async def get_setting_groups():
    try:
        return {"status": "success", "data": SettingsService.get_setting_groups()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting setting groups: {str(e)}")


@router.get("/groups/{group}")
async def get_settings_by_group(group: str):
    try:
        return {"status": "success", "data": SettingsService.get_settings_by_group(group)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting settings: {str(e)}")


@router.get("/keys")
async def get_settings_by_keys(keys: List[str] = Query(...)):
    try:
        return {"status": "success", "data": SettingsService.get_settings_by_keys(keys)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting settings: {str(e)}")


@router.put("")
async def bulk_update_settings(data: BulkSettings):
    try:
        return {"status": "success", "data": SettingsService.bulk_update_settings(data.settings)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating settings: {str(e)}")


@router.post("/initialize")
async def initialize_default_settings():
    """Insert default settings that do not exist yet"""
    try:
        created = SettingsService.initialize_default_settings()
        return {"status": "success", "data": {"created": created}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error initializing settings: {str(e)}")


@router.get("/export")
async def export_settings(include_private: bool = Query(False)):
    try:
        content = SettingsService.export_settings(include_private)
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": "attachment; filename=settings.json"},
        )
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error exporting settings: {str(e)}")


@router.post("/import")
async def import_settings(data: SettingsImport):
    try:
        return {"status": "success", "data": SettingsService.import_settings(data.data, data.overwrite)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error importing settings: {str(e)}")


@router.get("/{key}")
async def get_setting(key: str):
    try:
        value = SettingsService.get_setting(key)
        if value is None:
            raise HTTPException(status_code=404, detail=f"Setting {key} not found")
        return {"status": "success", "data": {"key": key, "value": value}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting setting: {str(e)}")


@router.put("/{key}")
async def set_setting(key: str, data: SettingValue):
    try:
        setting = SettingsService.set_setting(key, data.value, description=data.description,
                                              group=data.group, is_public=data.is_public)
        return {"status": "success", "data": setting}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error saving setting: {str(e)}")


@router.delete("/{key}")
async def delete_setting(key: str):
    try:
        return {"status": "success", "data": SettingsService.delete_setting(key)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting setting: {str(e)}")
