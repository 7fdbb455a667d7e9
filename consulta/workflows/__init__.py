"""Booking workflows. Each one takes its collaborators explicitly."""

from consulta.workflows.booking import BookingWorkflow
from consulta.workflows.cancellation import CancellationWorkflow
from consulta.workflows.maintenance import MaintenanceWorkflow
from consulta.workflows.payment_confirmation import PaymentConfirmationWorkflow
from consulta.workflows.reschedule import RescheduleWorkflow

__all__ = [
    "BookingWorkflow",
    "CancellationWorkflow",
    "MaintenanceWorkflow",
    "PaymentConfirmationWorkflow",
    "RescheduleWorkflow",
]
