"""Origin health probing"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Dict, List, Tuple

import httpx

from geocdn.config import settings
from geocdn.directory import RegionDirectory
from geocdn.errors import ProbeFailure
from geocdn.metrics import health_probes_total, health_probe_duration, origin_healthy
from geocdn.models import Origin, Region, RegionHealthStatus, utcnow

logger = logging.getLogger(__name__)


def record_probe(origin: Origin, ok: bool, latency_ms: float, checked_at=None,
                 failure_threshold: Optional[int] = None) -> None:
    """
    Apply one probe result to an origin.

    Failures are debounced: the origin stays healthy until
    ``failure_threshold`` consecutive failures have been seen, and a single
    success clears the counter.
    """
    threshold = failure_threshold or settings.failure_threshold
    origin.latency_ms = latency_ms
    if ok:
        origin.consecutive_failures = 0
        origin.healthy = True
    else:
        origin.consecutive_failures += 1
        origin.healthy = origin.consecutive_failures < threshold
    origin.last_check = checked_at or utcnow()


def summarize_region(region: Region) -> RegionHealthStatus:
    healthy = region.healthy_origins()
    checks = [origin.last_check for origin in region.origins if origin.last_check]
    avg_latency = region.average_latency()
    return RegionHealthStatus(
        region_id=region.id,
        healthy=len(healthy) > 0,
        available_origins=len(healthy),
        total_origins=len(region.origins),
        avg_latency_ms=avg_latency if avg_latency is not None else 0.0,
        last_check=max(checks) if checks else None,
    )


class HealthMonitor:
    """Probes every origin in the directory and persists the result"""

    def __init__(self, directory: RegionDirectory, client: Optional[httpx.Client] = None,
                 timeout: Optional[float] = None, concurrency: Optional[int] = None):
        self.directory = directory
        self.timeout = timeout or settings.health_check_timeout
        self.concurrency = max(1, concurrency or settings.health_check_concurrency)
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout)

    def close(self):
        if self._owns_client:
            self.client.close()

    def probe(self, origin: Origin) -> float:
        """Request the origin's health path, return elapsed milliseconds

        Raises ProbeFailure on a non-success status; the elapsed time is kept
        on the exception so the caller can still record it.
        """
        url = origin.url.rstrip("/") + settings.health_check_path
        start = time.perf_counter()
        response = self.client.get(url, timeout=self.timeout)
        elapsed_ms = (time.perf_counter() - start) * 1000
        if not response.is_success:
            raise ProbeFailure(origin.id, f"HTTP {response.status_code}", latency_ms=elapsed_ms)
        return elapsed_ms

    def check_origin(self, region: Region, origin: Origin) -> bool:
        """Probe one origin and record the outcome; never raises on probe errors"""
        try:
            latency_ms = self.probe(origin)
            ok = True
        except ProbeFailure as e:
            latency_ms = e.latency_ms if e.latency_ms is not None else settings.failure_latency_ms
            ok = False
            logger.warning(f"{e} (region {region.id})")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            latency_ms = settings.failure_latency_ms
            ok = False
            logger.warning(f"Probe of {origin.id} failed: {e!r} (region {region.id})")
        except Exception:
            latency_ms = settings.failure_latency_ms
            ok = False
            logger.exception(f"Probe of {origin.id} raised unexpectedly (region {region.id})")

        record_probe(origin, ok, latency_ms)

        outcome = "success" if ok else "failure"
        health_probes_total.labels(region=region.id, outcome=outcome).inc()
        health_probe_duration.labels(region=region.id).observe(latency_ms / 1000)
        origin_healthy.labels(region=region.id, origin=origin.id).set(1 if origin.healthy else 0)
        return ok

    def perform_health_checks(self) -> Dict[str, RegionHealthStatus]:
        """Sweep all regions once, save the directory, return per-region summaries"""
        regions = self.directory.regions()
        targets: List[Tuple[Region, Origin]] = [
            (region, origin) for region in regions for origin in region.origins
        ]

        if self.concurrency > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                list(pool.map(lambda target: self.check_origin(*target), targets))
        else:
            for region, origin in targets:
                self.check_origin(region, origin)

        self.directory.save_regions()

        results = {region.id: summarize_region(region) for region in regions}
        healthy_count = sum(1 for status in results.values() if status.healthy)
        logger.info(f"Health sweep done: {healthy_count}/{len(results)} regions healthy")
        return results

    def get_health_status(self) -> List[RegionHealthStatus]:
        """Current summaries from in-memory state"""
        return [summarize_region(region) for region in self.directory.regions()]


class HealthCheckScheduler:
    """Background thread running a sweep every ``interval`` seconds"""

    def __init__(self, monitor: HealthMonitor, interval: Optional[float] = None):
        self.monitor = monitor
        self.interval = interval or settings.health_check_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="health-checks", daemon=True)
        self._thread.start()
        logger.info(f"Health checks scheduled every {self.interval}s")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _run(self):
        while not self._stop.is_set():
            try:
                self.monitor.perform_health_checks()
            except Exception:
                # Keep the schedule alive across store outages
                logger.exception("Health sweep failed")
            self._stop.wait(self.interval)
