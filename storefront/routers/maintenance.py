"""
Maintenance flag.

GET    /maintenance    current state (cached, defaults to online)
POST   /maintenance    set state
PUT    /maintenance    toggle
DELETE /maintenance    back online
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from storefront.deps import get_maintenance_service
from storefront.schemas import MaintenanceOut, MaintenanceRequest
from storefront.services.maintenance import MaintenanceService

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.get("", response_model=MaintenanceOut)
async def get_status(
    service: MaintenanceService = Depends(get_maintenance_service),
) -> MaintenanceOut:
    return await service.get_status()


@router.post("", response_model=MaintenanceOut)
async def set_status(
    body: MaintenanceRequest,
    service: MaintenanceService = Depends(get_maintenance_service),
) -> MaintenanceOut:
    return service.set_status(body.is_maintenance, body.drop_date)


@router.put("", response_model=MaintenanceOut)
async def toggle(
    service: MaintenanceService = Depends(get_maintenance_service),
) -> MaintenanceOut:
    return await service.toggle()


@router.delete("", response_model=MaintenanceOut)
async def clear(
    service: MaintenanceService = Depends(get_maintenance_service),
) -> MaintenanceOut:
    return service.clear()
