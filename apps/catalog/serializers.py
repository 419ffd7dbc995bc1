"""Serializers for services and bundles."""

from __future__ import annotations

from django.db import transaction  # type: ignore
from rest_framework import serializers  # type: ignore

from .models import RESOURCE_TYPES, Bundle, BundleItem, Service


class ServiceSerializer(serializers.ModelSerializer):
    required_resource_types = serializers.ListField(
        child=serializers.ChoiceField(choices=RESOURCE_TYPES),
        allow_empty=False,
        required=False,
    )

    class Meta:
        model = Service
        fields = [
            "id",
            "name",
            "description",
            "duration_minutes",
            "buffer_minutes",
            "price",
            "currency",
            "required_resource_types",
            "skill",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate_duration_minutes(self, value: int) -> int:
        if value <= 0:
            raise serializers.ValidationError("Длительность должна быть больше нуля.")
        return value

    def validate_buffer_minutes(self, value: int) -> int:
        if value > 24 * 60:
            raise serializers.ValidationError("Перерыв не может быть длиннее суток.")
        return value

    def validate_required_resource_types(self, value):  # type: ignore
        return list(dict.fromkeys(value))

    def validate(self, attrs):  # type: ignore
        types = attrs.get("required_resource_types", getattr(self.instance, "required_resource_types", ["human"]))
        skill = attrs.get("skill", getattr(self.instance, "skill", ""))
        if skill and "human" not in types:
            raise serializers.ValidationError({"skill": "Навык применим только к услугам с сотрудником."})
        return attrs


class BundleItemSerializer(serializers.ModelSerializer):
    service_name = serializers.CharField(source="service.name", read_only=True)
    duration_minutes = serializers.IntegerField(source="service.duration_minutes", read_only=True)
    price = serializers.IntegerField(source="service.price", read_only=True)

    class Meta:
        model = BundleItem
        fields = ["service", "service_name", "position", "duration_minutes", "price"]
        read_only_fields = ["position"]


class BundleSerializer(serializers.ModelSerializer):
    items = BundleItemSerializer(many=True, read_only=True)
    service_ids = serializers.PrimaryKeyRelatedField(
        queryset=Service.objects.all(),
        many=True,
        write_only=True,
        required=False,
    )

    class Meta:
        model = Bundle
        fields = [
            "id",
            "name",
            "description",
            "concurrency",
            "human_policy",
            "price_mode",
            "discount_percent",
            "fixed_price",
            "is_active",
            "items",
            "service_ids",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate(self, attrs):  # type: ignore
        price_mode = attrs.get("price_mode", getattr(self.instance, "price_mode", Bundle.PriceMode.SUM))
        fixed_price = attrs.get("fixed_price", getattr(self.instance, "fixed_price", None))
        if price_mode == Bundle.PriceMode.FIXED and fixed_price is None:
            raise serializers.ValidationError({"fixed_price": "Для фиксированной цены нужно указать сумму."})
        for service in attrs.get("service_ids") or []:
            if not service.is_active:
                raise serializers.ValidationError({"service_ids": f"Услуга {service.pk} не активна."})
        if self.instance is None and not attrs.get("service_ids"):
            raise serializers.ValidationError({"service_ids": "Пакет должен содержать хотя бы одну услугу."})
        if "service_ids" in attrs and not attrs["service_ids"]:
            raise serializers.ValidationError({"service_ids": "Пакет должен содержать хотя бы одну услугу."})
        return attrs

    @transaction.atomic
    def create(self, validated_data):  # type: ignore
        services = validated_data.pop("service_ids", [])
        bundle = Bundle.objects.create(**validated_data)
        self._replace_items(bundle, services)
        return bundle

    @transaction.atomic
    def update(self, instance, validated_data):  # type: ignore
        services = validated_data.pop("service_ids", None)
        for field, value in validated_data.items():
            setattr(instance, field, value)
        instance.save()
        if services is not None:
            self._replace_items(instance, services)
        return instance

    @staticmethod
    def _replace_items(bundle: Bundle, services) -> None:
        bundle.items.all().delete()
        for position, service in enumerate(services):
            BundleItem.objects.create(bundle=bundle, service=service, position=position)


class QuoteSegmentSerializer(serializers.Serializer):
    service_id = serializers.IntegerField()
    name = serializers.CharField()
    offset_minutes = serializers.IntegerField()
    duration_minutes = serializers.IntegerField()
    buffer_minutes = serializers.IntegerField()
    resource_types = serializers.ListField(child=serializers.CharField())


class QuoteSerializer(serializers.Serializer):
    name = serializers.CharField()
    duration_minutes = serializers.IntegerField()
    price = serializers.IntegerField()
    currency = serializers.CharField()
    concurrency = serializers.CharField()
    human_policy = serializers.CharField()
    segments = QuoteSegmentSerializer(many=True)
