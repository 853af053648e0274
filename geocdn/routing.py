"""Geo-routing logic for region and origin selection"""
import logging
import random
from typing import Optional, List

from geocdn.config import settings
from geocdn.directory import RegionDirectory
from geocdn.errors import NoHealthyRegionError
from geocdn.metrics import routing_decisions_total, routing_failures_total
from geocdn.models import Origin, Region, RoutingDecision, RoutingReason

logger = logging.getLogger(__name__)


class RoutingEngine:
    """
    Picks a region, then an origin inside it, for one request.

    Strategy:
    1. The first region serving the request's country (directory order).
    2. If that region has no healthy origin, its fallback region (one hop).
       A region without any origins counts as no match.
    3. Otherwise the healthy region with the lowest average latency.
    Inside the region, origins are drawn by weight among healthy ones.

    Routing only reads directory state, so it can run concurrently with
    itself and with health sweeps.
    """

    def __init__(self, directory: RegionDirectory, rng: Optional[random.Random] = None,
                 legacy_geo_reason: Optional[bool] = None, default_country: Optional[str] = None):
        self.directory = directory
        self.rng = rng or random.Random()
        self.legacy_geo_reason = (
            settings.legacy_geo_reason if legacy_geo_reason is None else legacy_geo_reason
        )
        self.default_country = default_country or settings.default_country

    def route(self, country: Optional[str] = None) -> RoutingDecision:
        country = (country or self.default_country).strip().upper()
        regions = self.directory.regions()

        target = self.find_region_by_country(country, regions)
        fallback = False

        if target is not None and not target.is_healthy() and target.fallback:
            logger.info(f"Region {target.id} has no healthy origin, failing over to {target.fallback}")
            target = self.directory.get(target.fallback)
            fallback = True

        if target is not None and not target.origins:
            logger.info(f"Region {target.id} has no origins, selecting by latency")
            target = None

        if target is None:
            target = self.find_lowest_latency_region(regions)
            reason = RoutingReason.GEO if self.legacy_geo_reason else RoutingReason.LATENCY
        elif fallback:
            reason = RoutingReason.FAILOVER
        else:
            reason = RoutingReason.GEO

        if target is None:
            routing_failures_total.inc()
            raise NoHealthyRegionError()

        origin = self.select_origin(target)
        routing_decisions_total.labels(region=target.id, reason=reason.value).inc()
        return RoutingDecision(region=target, origin=origin, reason=reason, fallback=fallback)

    def find_region_by_country(self, country: str,
                               regions: Optional[List[Region]] = None) -> Optional[Region]:
        for region in regions if regions is not None else self.directory.regions():
            if country in region.countries:
                return region
        return None

    def find_lowest_latency_region(self, regions: Optional[List[Region]] = None) -> Optional[Region]:
        best = None
        best_latency = None
        for region in regions if regions is not None else self.directory.regions():
            latency = region.average_latency()
            if latency is None:
                continue
            if best is None or latency < best_latency:
                best, best_latency = region, latency
        return best

    def select_origin(self, region: Region) -> Origin:
        """Weighted random choice among the region's healthy origins"""
        healthy = region.healthy_origins()

        if not healthy:
            if not region.origins:
                routing_failures_total.inc()
                raise NoHealthyRegionError(f"Region {region.id} has no origins")
            # Serve something over nothing
            logger.warning(f"Region {region.id} has no healthy origin, using {region.origins[0].id}")
            return region.origins[0]

        if len(healthy) == 1:
            return healthy[0]

        candidates = [origin for origin in healthy if origin.weight > 0]
        if not candidates:
            return healthy[0]
        if len(candidates) == 1:
            return candidates[0]

        total_weight = sum(origin.weight for origin in candidates)
        remaining = self.rng.random() * total_weight
        for origin in candidates:
            remaining -= origin.weight
            if remaining <= 0:
                return origin

        # Float rounding can leave a sliver above zero
        return candidates[-1]
