"""Catalog services: resolve offering references and compose them."""

from __future__ import annotations

from dataclasses import dataclass

from apps.resources.models import Resource
from shared.domain.exceptions import InvalidOffering, UnknownService
from shared.domain.value_objects import Money

from .domain.composer import BundleRules, Composition, ServiceSpec, compose, compose_service
from .models import Bundle, Service, default_currency


@dataclass(frozen=True)
class OfferingRef:
    """`service:<id>` or `bundle:<id>`."""

    kind: str
    pk: int

    SERVICE = "service"
    BUNDLE = "bundle"

    def __str__(self) -> str:
        return f"{self.kind}:{self.pk}"


def parse_offering(value) -> OfferingRef:
    if isinstance(value, OfferingRef):
        return value
    kind, sep, raw_pk = str(value or "").partition(":")
    if not sep or kind not in (OfferingRef.SERVICE, OfferingRef.BUNDLE):
        raise InvalidOffering(f"Offering must look like 'service:<id>' or 'bundle:<id>', got {value!r}")
    try:
        pk = int(raw_pk)
    except ValueError as exc:
        raise InvalidOffering(f"Offering id must be an integer, got {raw_pk!r}") from exc
    if pk <= 0:
        raise InvalidOffering(f"Offering id must be positive, got {pk}")
    return OfferingRef(kind, pk)


def service_spec(service: Service) -> ServiceSpec:
    return ServiceSpec(
        service_id=service.pk,
        name=service.name,
        duration_minutes=service.duration_minutes,
        price=Money(int(service.price), service.currency),
        resource_types=tuple(service.required_resource_types or ("human",)),
        skill=service.skill or "",
        is_active=service.is_active,
        buffer_minutes=service.buffer_minutes,
    )


def active_humans() -> list[tuple[int, frozenset[str]]]:
    rows = Resource.objects.filter(
        resource_type=Resource.ResourceType.HUMAN,
        is_active=True,
    ).values_list("pk", "skills")
    return [(pk, frozenset(skills or ())) for pk, skills in rows]


def bundle_rules(bundle: Bundle, currency: str) -> BundleRules:
    fixed_price = None
    if bundle.fixed_price is not None:
        fixed_price = Money(int(bundle.fixed_price), currency)
    return BundleRules.parse(
        bundle.concurrency,
        bundle.human_policy,
        bundle.price_mode,
        bundle.discount_percent,
        fixed_price,
    )


def compose_bundle(bundle: Bundle) -> Composition:
    specs = [service_spec(item.service) for item in bundle.ordered_items()]
    currency = specs[0].price.currency if specs else default_currency()
    return compose(bundle.name, specs, bundle_rules(bundle, currency), humans=active_humans())


def compose_offering(value) -> Composition:
    """
    Compose the offering behind a reference with current catalog data.

    Raises UnknownService for a missing or inactive service and
    InvalidOffering for a missing or inactive bundle.
    """

    ref = parse_offering(value)
    if ref.kind == OfferingRef.SERVICE:
        service = Service.objects.filter(pk=ref.pk, is_active=True).first()
        if service is None:
            raise UnknownService(f"Service {ref.pk} does not exist or is not active", service_id=ref.pk)
        return compose_service(service_spec(service))

    bundle = Bundle.objects.filter(pk=ref.pk, is_active=True).first()
    if bundle is None:
        raise InvalidOffering(f"Bundle {ref.pk} does not exist or is not active")
    return compose_bundle(bundle)
