"""Appointment routes: book, read, cancel, reschedule.

Patients may only touch their own appointments; staff (as asserted by the
upstream auth layer) may touch any. Someone else's appointment is reported
as not found.
"""
# ruff: noqa: B008

from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, status

from consulta.api.dependencies import Services, current_user_id, get_services, is_staff
from consulta.errors import NotFound
from consulta.schemas.api import (
    AppointmentView,
    BookAppointmentRequest,
    BookingResponse,
    CancelAppointmentRequest,
    CancellationResponse,
    RescheduleAppointmentRequest,
    RescheduleResponse,
)
from consulta.schemas.booking import AppointmentRecord

router = APIRouter(prefix="/appointments", tags=["appointments"])


async def _load_owned(
    services: Services, appointment_id: uuid.UUID, user_id: uuid.UUID, staff: bool
) -> AppointmentRecord:
    appointment = await services.store.get(appointment_id)
    if appointment is None or (not staff and appointment.patient_id != user_id):
        raise NotFound(appointment_id=str(appointment_id))
    return appointment


@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingResponse)
async def book_appointment(
    body: BookAppointmentRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> BookingResponse:
    result = await services.booking.book(
        patient_id=user_id,
        professional_id=body.professional_id,
        scheduled_date=body.scheduled_date,
        scheduled_time=body.scheduled_time,
        coupon_code=body.coupon_code,
    )
    return BookingResponse.from_result(result)


@router.get("/{appointment_id}", response_model=AppointmentView)
async def get_appointment(
    appointment_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    staff: bool = Depends(is_staff),
    services: Services = Depends(get_services),
) -> AppointmentView:
    return AppointmentView.from_record(await _load_owned(services, appointment_id, user_id, staff))


@router.post("/{appointment_id}/cancel", response_model=CancellationResponse)
async def cancel_appointment(
    appointment_id: uuid.UUID,
    body: CancelAppointmentRequest | None = Body(default=None),
    user_id: uuid.UUID = Depends(current_user_id),
    staff: bool = Depends(is_staff),
    services: Services = Depends(get_services),
) -> CancellationResponse:
    await _load_owned(services, appointment_id, user_id, staff)
    result = await services.cancellation.cancel(
        appointment_id,
        reason=body.reason if body else None,
        actor_id=str(user_id),
    )
    return CancellationResponse.from_result(result)


@router.post("/{appointment_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    body: RescheduleAppointmentRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    staff: bool = Depends(is_staff),
    services: Services = Depends(get_services),
) -> RescheduleResponse:
    await _load_owned(services, appointment_id, user_id, staff)
    result = await services.reschedule.reschedule(
        appointment_id,
        new_professional_id=body.new_professional_id,
        new_date=body.new_date,
        new_time=body.new_time,
        actor_id=str(user_id),
    )
    return RescheduleResponse.from_result(result)
