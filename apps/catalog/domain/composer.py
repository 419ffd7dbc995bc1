"""
Bundle Composer

Computes the duration, price and per-service timing of an offering
(a single service or a bundle of services) from the bundle rules:

- serial bundles run services one after another; duration is the sum
- parallel bundles run services at the same time; duration is the max
- a shared human policy books one staff member for the whole offering,
  so only staff whose skills cover every service are eligible
- a service buffer keeps its resources blocked after the service but
  is not part of the offering duration

A single service is composed as a one-item serial bundle with a shared
human. The composer never guesses: an unknown rule variant, an empty
bundle or an inactive service is an error.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Sequence, Tuple
import logging

from shared.domain.base import ValueObject
from shared.domain.exceptions import EmptyBundle, IncompatibleSameHuman, InputError, UnknownService
from shared.domain.value_objects import Money, TimeWindow

logger = logging.getLogger(__name__)

HUMAN = 'human'


class Concurrency(str, Enum):
    SERIAL = 'serial'
    PARALLEL = 'parallel'


class HumanPolicy(str, Enum):
    SHARED = 'shared'
    INDEPENDENT = 'independent'


class PriceMode(str, Enum):
    SUM = 'sum'
    DISCOUNT = 'discount'
    FIXED = 'fixed'


@dataclass(frozen=True)
class ServiceSpec(ValueObject):
    """Catalog data of one service as the composer sees it"""
    service_id: int
    name: str
    duration_minutes: int
    price: Money
    resource_types: Tuple[str, ...] = (HUMAN,)
    skill: str = ''
    is_active: bool = True
    buffer_minutes: int = 0

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise InputError(f"Service {self.service_id} has a non-positive duration")
        if self.buffer_minutes < 0:
            raise InputError(f"Service {self.service_id} has a negative buffer")
        if not self.resource_types:
            raise InputError(f"Service {self.service_id} requires no resources")

    @property
    def needs_human(self) -> bool:
        return HUMAN in self.resource_types


@dataclass(frozen=True)
class BundleRules(ValueObject):
    concurrency: Concurrency = Concurrency.SERIAL
    human_policy: HumanPolicy = HumanPolicy.SHARED
    price_mode: PriceMode = PriceMode.SUM
    discount_percent: Decimal = Decimal('0')
    fixed_price: Optional[Money] = None

    @classmethod
    def parse(cls, concurrency, human_policy, price_mode='sum', discount_percent=0, fixed_price=None):
        """Build rules from stored strings; unknown variants are rejected"""
        try:
            return cls(
                concurrency=Concurrency(concurrency),
                human_policy=HumanPolicy(human_policy),
                price_mode=PriceMode(price_mode),
                discount_percent=Decimal(str(discount_percent)),
                fixed_price=fixed_price,
            )
        except ValueError as exc:
            raise InputError(f"Invalid bundle rules: {exc}") from exc


SINGLE_SERVICE_RULES = BundleRules(Concurrency.SERIAL, HumanPolicy.SHARED, PriceMode.SUM)


@dataclass(frozen=True)
class Segment(ValueObject):
    """One service placed inside the offering, relative to its start"""
    service_id: int
    name: str
    offset_minutes: int
    duration_minutes: int
    resource_types: Tuple[str, ...]
    skill: str = ''
    buffer_minutes: int = 0
    def window_at(self, start: datetime) -> TimeWindow:
        return TimeWindow.of(start + timedelta(minutes=self.offset_minutes), self.duration_minutes)

    @property
    def needs_human(self) -> bool:
        return HUMAN in self.resource_types

    @property
    def blocked_until(self) -> int:
        """Minutes from the offering start until the resources are free again"""
        return self.offset_minutes + self.duration_minutes + self.buffer_minutes


@dataclass(frozen=True)
class Composition(ValueObject):
    """Frozen result of composing an offering"""
    name: str
    duration_minutes: int
    price: Money
    rules: BundleRules
    segments: Tuple[Segment, ...] = field(default_factory=tuple)

    def window_at(self, start: datetime) -> TimeWindow:
        return TimeWindow.of(start, self.duration_minutes)

    @property
    def shares_human(self) -> bool:
        return self.rules.human_policy is HumanPolicy.SHARED

    @property
    def required_skills(self) -> FrozenSet[str]:
        return frozenset(s.skill for s in self.segments if s.needs_human and s.skill)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'duration_minutes': self.duration_minutes,
            'price': self.price.amount,
            'currency': self.price.currency,
            'concurrency': self.rules.concurrency.value,
            'human_policy': self.rules.human_policy.value,
            'segments': [
                {
                    'service_id': s.service_id,
                    'name': s.name,
                    'offset_minutes': s.offset_minutes,
                    'duration_minutes': s.duration_minutes,
                    'buffer_minutes': s.buffer_minutes,
                    'resource_types': list(s.resource_types),
                }
                for s in self.segments
            ],
        }


def total_duration(durations: Sequence[int], concurrency: Concurrency) -> int:
    if concurrency is Concurrency.SERIAL:
        return sum(durations)
    elif concurrency is Concurrency.PARALLEL:
        return max(durations)
    raise InputError(f"Unknown concurrency: {concurrency!r}")


def total_price(prices: Sequence[Money], rules: BundleRules) -> Money:
    currency = prices[0].currency
    if any(p.currency != currency for p in prices):
        raise InputError("All services of a bundle must be priced in one currency")
    subtotal = sum(prices[1:], prices[0])

    if rules.price_mode is PriceMode.SUM:
        return subtotal
    elif rules.price_mode is PriceMode.DISCOUNT:
        try:
            return subtotal.discounted(rules.discount_percent)
        except ValueError as exc:
            raise InputError(str(exc)) from exc
    elif rules.price_mode is PriceMode.FIXED:
        if rules.fixed_price is None:
            raise InputError("Fixed price mode requires a fixed price")
        return rules.fixed_price
    raise InputError(f"Unknown price mode: {rules.price_mode!r}")


def place_segments(services: Sequence[ServiceSpec], concurrency: Concurrency) -> Tuple[Segment, ...]:
    segments = []
    offset = 0
    for spec in services:
        segments.append(Segment(
            service_id=spec.service_id,
            name=spec.name,
            offset_minutes=offset,
            duration_minutes=spec.duration_minutes,
            resource_types=tuple(spec.resource_types),
            skill=spec.skill,
            buffer_minutes=spec.buffer_minutes,
        ))
        if concurrency is Concurrency.SERIAL:
            offset += spec.duration_minutes
        elif concurrency is not Concurrency.PARALLEL:
            raise InputError(f"Unknown concurrency: {concurrency!r}")
    return tuple(segments)


def eligible_humans(skill_sets: Iterable[Tuple[int, FrozenSet[str]]], required: FrozenSet[str]) -> list:
    """Ids of staff whose skills cover every required skill"""
    return [human_id for human_id, skills in skill_sets if required <= skills]


def compose(
    name: str,
    services: Sequence[ServiceSpec],
    rules: BundleRules,
    humans: Optional[Iterable[Tuple[int, FrozenSet[str]]]] = None,
) -> Composition:
    """
    Compose an offering

    `humans` lists (resource id, skills) of the active staff; when given
    and the offering shares one human, at least one of them must be able
    to perform every service that needs staff.

    Raises:
        EmptyBundle: no services
        UnknownService: a service is inactive
        IncompatibleSameHuman: no single staff member can do every service
    """
    if not services:
        raise EmptyBundle(f"Bundle '{name}' has no services")

    for spec in services:
        if not spec.is_active:
            raise UnknownService(f"Service {spec.service_id} is not active", service_id=spec.service_id)

    human_services = [s for s in services if s.needs_human]
    if rules.human_policy is HumanPolicy.SHARED:
        if humans is not None and human_services:
            required = frozenset(s.skill for s in human_services if s.skill)
            if not eligible_humans(humans, required):
                logger.warning(f"No staff member covers skills {sorted(required)} for bundle '{name}'")
                raise IncompatibleSameHuman(
                    f"No single staff member can perform every service of '{name}'",
                    skills=sorted(required),
                )
    elif rules.human_policy is not HumanPolicy.INDEPENDENT:
        raise InputError(f"Unknown human policy: {rules.human_policy!r}")

    duration = total_duration([s.duration_minutes for s in services], rules.concurrency)
    price = total_price([s.price for s in services], rules)

    return Composition(
        name=name,
        duration_minutes=duration,
        price=price,
        rules=rules,
        segments=place_segments(services, rules.concurrency),
    )


def compose_service(spec: ServiceSpec) -> Composition:
    return compose(spec.name, [spec], SINGLE_SERVICE_RULES)
