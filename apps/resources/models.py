"""Resource models: staff, rooms and equipment with their working hours."""

from __future__ import annotations

from django.core.exceptions import ValidationError  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Resource(models.Model):
    """Independently schedulable resource (a staff member, a room, a device)."""

    class ResourceType(models.TextChoices):
        HUMAN = "human", _("Staff member")
        ROOM = "room", _("Room")
        EQUIPMENT = "equipment", _("Equipment")

    name = models.CharField(max_length=255)
    resource_type = models.CharField(
        max_length=20,
        choices=ResourceType.choices,
        default=ResourceType.HUMAN,
    )
    skills = models.JSONField(
        default=list,
        blank=True,
        help_text=_("Skill codes this staff member can perform."),
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Resource")
        verbose_name_plural = _("Resources")
        ordering = ["id"]
        indexes = [
            models.Index(fields=["resource_type", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.resource_type})"

    def clean(self) -> None:
        if not isinstance(self.skills, list) or not all(isinstance(s, str) for s in self.skills):
            raise ValidationError({"skills": _("Skills must be a list of strings.")})
        if self.resource_type != self.ResourceType.HUMAN and self.skills:
            raise ValidationError({"skills": _("Only staff members have skills.")})


class WorkingHours(models.Model):
    """Weekly open-hours template row. No row (or start == end) means a day off."""

    class Weekday(models.IntegerChoices):
        MONDAY = 0, _("Monday")
        TUESDAY = 1, _("Tuesday")
        WEDNESDAY = 2, _("Wednesday")
        THURSDAY = 3, _("Thursday")
        FRIDAY = 4, _("Friday")
        SATURDAY = 5, _("Saturday")
        SUNDAY = 6, _("Sunday")

    resource = models.ForeignKey(
        Resource,
        on_delete=models.CASCADE,
        related_name="working_hours",
    )
    weekday = models.PositiveSmallIntegerField(choices=Weekday.choices)
    start_time = models.TimeField()
    end_time = models.TimeField()

    class Meta:
        verbose_name = _("Working hours")
        verbose_name_plural = _("Working hours")
        ordering = ["resource", "weekday"]
        constraints = [
            models.UniqueConstraint(fields=["resource", "weekday"], name="working_hours_one_per_weekday"),
            models.CheckConstraint(
                condition=models.Q(end_time__gte=models.F("start_time")),
                name="working_hours_valid_range",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.resource_id} {self.get_weekday_display()} {self.start_time}-{self.end_time}"

    def clean(self) -> None:
        if self.end_time < self.start_time:
            raise ValidationError(_("Closing time must not be before opening time."))


class TimeOff(models.Model):
    """Block of time when a resource is unavailable (vacation, maintenance, break)."""

    class Kind(models.TextChoices):
        VACATION = "vacation", _("Vacation")
        SICK = "sick", _("Sick leave")
        MAINTENANCE = "maintenance", _("Maintenance")
        TRAINING = "training", _("Training")
        BREAK = "break", _("Break")

    resource = models.ForeignKey(
        Resource,
        on_delete=models.CASCADE,
        related_name="time_off",
    )
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    kind = models.CharField(max_length=20, choices=Kind.choices, default=Kind.BREAK)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Time off")
        verbose_name_plural = _("Time off")
        ordering = ["starts_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(ends_at__gt=models.F("starts_at")),
                name="time_off_valid_range",
            ),
        ]
        indexes = [
            models.Index(fields=["resource", "starts_at", "ends_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.get_kind_display()} for {self.resource_id}: {self.starts_at} - {self.ends_at}"

    def clean(self) -> None:
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValidationError(_("Time off must end after it starts."))
