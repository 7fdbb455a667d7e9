"""Maintenance routes for the external cron. HTTP Basic Auth required."""
# ruff: noqa: B008

from __future__ import annotations

from fastapi import APIRouter, Depends

from consulta.admin.auth import verify_admin
from consulta.api.dependencies import Services, get_services
from consulta.schemas.api import MaintenanceResponse

router = APIRouter(prefix="/admin/maintenance", tags=["admin"], dependencies=[Depends(verify_admin)])


@router.post("/expire-holds", response_model=MaintenanceResponse)
async def expire_holds(services: Services = Depends(get_services)) -> MaintenanceResponse:
    report = await services.maintenance.expire_reschedule_holds()
    return MaintenanceResponse.from_report(report)


@router.post("/cancel-unpaid", response_model=MaintenanceResponse)
async def cancel_unpaid(services: Services = Depends(get_services)) -> MaintenanceResponse:
    report = await services.maintenance.cancel_unpaid_bookings()
    return MaintenanceResponse.from_report(report)
