"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from shared.domain.exceptions import SchedulingSystemError

from .ledger import BookingLedger

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (запускаются автоматически через Celery Beat)
# ============================================================================

@shared_task(
    name="bookings.expire_stale_holds",
    autoretry_for=(SchedulingSystemError,),
    retry_backoff=True,
    retry_backoff_max=30,
    max_retries=3,
)
def expire_stale_holds() -> dict[str, int]:
    """
    Перевод просроченных удержаний в статус EXPIRED.

    Ищет удержания со статусом PENDING, у которых expires_at уже наступил.
    Такие удержания и так не блокируют слот, задача лишь фиксирует статус.

    Запускается каждые 30 секунд через Celery Beat.

    Returns:
        dict: {"expired": количество истёкших удержаний}
    """
    expired = BookingLedger().expire_stale()
    if expired:
        logger.info(f"Expired {expired} stale holds")
    return {"expired": expired}


@shared_task(
    name="bookings.complete_finished_bookings",
    autoretry_for=(SchedulingSystemError,),
    retry_backoff=True,
    max_retries=3,
)
def complete_finished_bookings() -> dict[str, int]:
    """
    Завершение прошедших бронирований.

    Переводит CONFIRMED -> COMPLETED, когда окончание брони уже прошло.

    Returns:
        dict: {"completed": количество завершённых броней}
    """
    completed = BookingLedger().complete_finished()
    return {"completed": completed}


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@shared_task(name="bookings.notify_booking_event")
def notify_booking_event(event_type: str, payload: dict) -> dict[str, str]:
    """
    Точка интеграции с сервисом уведомлений.

    Доставка уведомлений вне этого сервиса, здесь событие только
    фиксируется в логе.
    """
    logger.info(
        f"Booking notification {event_type}",
        extra={"event_type": event_type, "booking_id": payload.get("aggregate_id")},
    )
    return {"event_type": event_type, "booking_id": str(payload.get("aggregate_id"))}
