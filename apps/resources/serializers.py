"""Serializers for resources, working hours and time off."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Resource, TimeOff, WorkingHours


class WorkingHoursSerializer(serializers.ModelSerializer):
    weekday_display = serializers.CharField(source="get_weekday_display", read_only=True)

    class Meta:
        model = WorkingHours
        fields = ["id", "weekday", "weekday_display", "start_time", "end_time"]

    def validate(self, attrs):  # type: ignore
        start = attrs.get("start_time")
        end = attrs.get("end_time")
        if start and end and end < start:
            raise serializers.ValidationError("Время окончания не может быть раньше начала.")
        return attrs


class ResourceSerializer(serializers.ModelSerializer):
    working_hours = WorkingHoursSerializer(many=True, required=False)

    class Meta:
        model = Resource
        fields = [
            "id",
            "name",
            "resource_type",
            "skills",
            "is_active",
            "working_hours",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate_skills(self, value):  # type: ignore
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError("Навыки должны быть списком строк.")
        return sorted(set(value))

    def validate(self, attrs):  # type: ignore
        hours = attrs.get("working_hours") or []
        weekdays = [row["weekday"] for row in hours]
        if len(weekdays) != len(set(weekdays)):
            raise serializers.ValidationError({"working_hours": "Для каждого дня недели допускается одна запись."})
        resource_type = attrs.get("resource_type", getattr(self.instance, "resource_type", Resource.ResourceType.HUMAN))
        if resource_type != Resource.ResourceType.HUMAN and attrs.get("skills"):
            raise serializers.ValidationError({"skills": "Навыки указываются только для сотрудников."})
        return attrs

    def create(self, validated_data):  # type: ignore
        hours = validated_data.pop("working_hours", [])
        resource = Resource.objects.create(**validated_data)
        self._replace_hours(resource, hours)
        return resource

    def update(self, instance, validated_data):  # type: ignore
        hours = validated_data.pop("working_hours", None)
        for field, value in validated_data.items():
            setattr(instance, field, value)
        instance.save()
        if hours is not None:
            self._replace_hours(instance, hours)
        return instance

    @staticmethod
    def _replace_hours(resource: Resource, hours) -> None:
        resource.working_hours.all().delete()
        WorkingHours.objects.bulk_create(WorkingHours(resource=resource, **row) for row in hours)
        # bulk_create skips post_save, the resource save fires it instead
        resource.save(update_fields=["updated_at"])


class TimeOffSerializer(serializers.ModelSerializer):
    class Meta:
        model = TimeOff
        fields = ["id", "resource", "starts_at", "ends_at", "kind", "reason", "created_at"]
        read_only_fields = ["created_at"]

    def validate(self, attrs):  # type: ignore
        starts_at = attrs.get("starts_at", getattr(self.instance, "starts_at", None))
        ends_at = attrs.get("ends_at", getattr(self.instance, "ends_at", None))
        if starts_at and ends_at and ends_at <= starts_at:
            raise serializers.ValidationError("Окончание должно быть позже начала.")
        return attrs


class SlotGridSerializer(serializers.Serializer):
    resource = serializers.IntegerField()
    date = serializers.DateField()
    granularity_minutes = serializers.IntegerField()
    slots = serializers.ListField(child=serializers.DateTimeField())
