"""
Product catalog service.

Seeded once at process start and read-only afterwards.
"""

from collections.abc import Iterable

import structlog

from curbside.billing.catalog.models import BillingInterval, Service, ServiceCategory
from curbside.billing.exceptions import CatalogMismatchError

logger = structlog.get_logger(__name__)


DEFAULT_SERVICES: tuple[Service, ...] = (
    Service(
        id="svc_base_fee",
        name="Curbside Trash Service",
        description="Weekly curbside trash collection base fee. Equipment must be added separately.",
        category=ServiceCategory.BASE_FEE,
        unit_price=2900,
    ),
    Service(
        id="svc_small_can",
        name="Small Trash Can (32G)",
        description="Weekly curbside trash collection service with one 32-gallon can.",
        category=ServiceCategory.BASE_SERVICE,
        unit_price=2000,
        setup_fee=4500,
        sticker_fee=0,
    ),
    Service(
        id="svc_medium_can",
        name="Medium Trash Can (64G)",
        description="Weekly curbside trash collection service with one 64-gallon can.",
        category=ServiceCategory.BASE_SERVICE,
        unit_price=2500,
        setup_fee=6500,
        sticker_fee=0,
    ),
    Service(
        id="svc_large_can",
        name="Large Trash Can (96G)",
        description="Weekly curbside trash collection service with one 96-gallon can.",
        category=ServiceCategory.BASE_SERVICE,
        unit_price=3000,
        setup_fee=8500,
        sticker_fee=0,
    ),
    Service(
        id="svc_recycling",
        name="Recycling Service",
        description="Weekly curbside recycling service. One 32G recycling can included.",
        category=ServiceCategory.BASE_SERVICE,
        unit_price=1200,
        setup_fee=2500,
        sticker_fee=0,
    ),
    Service(
        id="svc_backdoor",
        name="At House (Backdoor) Service",
        description="We retrieve your cans from the house and return them.",
        category=ServiceCategory.UPGRADE,
        unit_price=2000,
    ),
    Service(
        id="svc_liner",
        name="Trash Can Liner Service",
        description="A fresh liner installed after every weekly collection.",
        category=ServiceCategory.UPGRADE,
        unit_price=600,
    ),
    Service(
        id="svc_handyman",
        name="Handyman Services",
        description="On-demand handyman services for your residential property.",
        category=ServiceCategory.STANDALONE,
        unit_price=22500,
        interval=None,
    ),
)

DEFAULT_SPECIAL_PICKUPS: tuple[Service, ...] = (
    Service(
        id="spu_bulk_trash",
        name="Bulk Trash Pick-up",
        description="Large items like furniture or mattresses.",
        category=ServiceCategory.SPECIAL_PICKUP,
        unit_price=7500,
        interval=None,
    ),
    Service(
        id="spu_white_goods",
        name="White Goods (Appliance)",
        description="Refrigerators, stoves, washers, dryers.",
        category=ServiceCategory.SPECIAL_PICKUP,
        unit_price=5000,
        interval=None,
    ),
    Service(
        id="spu_e_waste",
        name="E-Waste",
        description="Computers, TVs, and other electronics.",
        category=ServiceCategory.SPECIAL_PICKUP,
        unit_price=4000,
        interval=None,
    ),
)


class CatalogService:
    """Read-only lookup over the seeded services."""

    def __init__(
        self,
        services: Iterable[Service] | None = None,
        special_pickups: Iterable[Service] | None = None,
    ) -> None:
        seeded = tuple(DEFAULT_SERVICES if services is None else services)
        pickups = tuple(DEFAULT_SPECIAL_PICKUPS if special_pickups is None else special_pickups)
        self._services: dict[str, Service] = {}
        self._special_pickups: dict[str, Service] = {}
        for service in seeded:
            if service.id in self._services:
                raise ValueError(f"Duplicate service id in catalog: {service.id}")
            self._services[service.id] = service
        for pickup in pickups:
            if pickup.id in self._services or pickup.id in self._special_pickups:
                raise ValueError(f"Duplicate service id in catalog: {pickup.id}")
            if pickup.is_recurring:
                raise ValueError(f"Special pickup {pickup.id} cannot be recurring")
            self._special_pickups[pickup.id] = pickup

        logger.debug(
            "catalog_seeded",
            service_count=len(self._services),
            special_pickup_count=len(self._special_pickups),
        )

    def list_products(self) -> list[Service]:
        return list(self._services.values())

    def list_special_pickups(self) -> list[Service]:
        return list(self._special_pickups.values())

    def get_special_pickup(self, service_id: str) -> Service:
        pickup = self._special_pickups.get(service_id)
        if pickup is None:
            raise CatalogMismatchError(
                f"Special pickup {service_id} not found in catalog", service_id=service_id
            )
        return pickup

    def get_service(self, service_id: str) -> Service:
        service = self._services.get(service_id)
        if service is None:
            raise CatalogMismatchError(
                f"Service {service_id} not found in catalog", service_id=service_id
            )
        return service

    def resolve(self, service: Service | str) -> Service:
        """Return the authoritative catalog entry for a service or service id."""
        service_id = service if isinstance(service, str) else service.id
        return self.get_service(service_id)

    def list_by_category(self, category: ServiceCategory) -> list[Service]:
        return [s for s in self._services.values() if s.category == category]

    def list_recurring(self) -> list[Service]:
        return [s for s in self._services.values() if s.interval == BillingInterval.MONTH]
