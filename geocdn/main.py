from fastapi import FastAPI, HTTPException, Header, Query, Request, Response, Depends
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, List, Dict
import logging
from geocdn.cache import GeoCacheManager
from geocdn.config import settings
from geocdn.directory import RegionDirectory
from geocdn.errors import NoHealthyRegionError, StoreError
from geocdn.health import HealthMonitor, HealthCheckScheduler
from geocdn.kv import KeyValueStore, create_kv_store
from geocdn.metrics import get_metrics, get_content_type
from geocdn.models import (
    Region, RoutingDecision, RegionHealthStatus, ReplicationJob,
    ReplicationRequest, CacheEntry, CacheWriteRequest, CacheWarmRequest,
    PurgeResponse, WarmResponse, HealthResponse
)
from geocdn.objects import ObjectStore, create_object_store
from geocdn.presets import create_default_directory
from geocdn.replication import CrossRegionReplicator
from geocdn.routing import RoutingEngine

logger = logging.getLogger(__name__)

@dataclass
class Services:
    """Everything one process needs, wired together once"""
    kv: KeyValueStore
    objects: ObjectStore
    directory: RegionDirectory
    router: RoutingEngine
    monitor: HealthMonitor
    replicator: CrossRegionReplicator
    cache: GeoCacheManager
    scheduler: Optional[HealthCheckScheduler] = None

def build_services(kv: KeyValueStore, objects: ObjectStore,
                   directory: Optional[RegionDirectory] = None,
                   monitor: Optional[HealthMonitor] = None,
                   schedule_health_checks: bool = False) -> Services:
    directory = directory or RegionDirectory(kv)
    router = RoutingEngine(directory)
    monitor = monitor or HealthMonitor(directory)
    return Services(
        kv=kv,
        objects=objects,
        directory=directory,
        router=router,
        monitor=monitor,
        replicator=CrossRegionReplicator(kv, objects),
        cache=GeoCacheManager(kv, router, directory),
        scheduler=HealthCheckScheduler(monitor) if schedule_health_checks else None,
    )

def create_services() -> Services:
    """Services configured from settings"""
    kv = create_kv_store()
    directory = create_default_directory(kv) if settings.load_presets else RegionDirectory(kv)
    return build_services(
        kv,
        create_object_store(),
        directory=directory,
        schedule_health_checks=settings.health_checks_enabled,
    )

def create_app(services: Optional[Services] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan context manager"""
        # Startup
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        svc = services or create_services()
        app.state.services = svc

        try:
            svc.directory.load_regions()
        except StoreError as e:
            logger.warning(f"Starting without persisted regions: {e}")

        svc.replicator.start()
        if svc.scheduler:
            svc.scheduler.start()
        logger.info(f"Geo routing service started with {len(svc.directory)} regions")

        yield

        # Shutdown
        if svc.scheduler:
            svc.scheduler.stop()
        svc.replicator.stop()
        svc.monitor.close()
        svc.kv.close()
        logger.info("Geo routing service stopped")

    app = FastAPI(
        title="GeoCDN Region Router",
        description="Region routing, origin health and cross-region replication",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(NoHealthyRegionError)
    async def no_healthy_region(request: Request, exc: NoHealthyRegionError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        logger.error(f"Store error on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    _register_routes(app)
    return app

def get_services(request: Request) -> Services:
    return request.app.state.services

def _register_routes(app: FastAPI):

    @app.get("/health", response_model=HealthResponse)
    async def health(svc: Services = Depends(get_services)):
        """Service health with per-region origin availability"""
        statuses = svc.monitor.get_health_status()
        regions = {status.region_id: status.healthy for status in statuses}
        healthy_regions = sum(regions.values())
        return HealthResponse(
            status="healthy" if healthy_regions == len(regions) else "degraded",
            service="geocdn",
            total_regions=len(regions),
            healthy_regions=healthy_regions,
            regions=regions,
        )

    @app.get("/regions", response_model=List[Region])
    async def list_regions(svc: Services = Depends(get_services)):
        return svc.directory.regions()

    @app.put("/regions/{region_id}", response_model=Region)
    async def put_region(region_id: str, region: Region, svc: Services = Depends(get_services)):
        """Add or replace a region and persist the directory"""
        if region.id != region_id:
            raise HTTPException(status_code=400, detail="Region id does not match path")
        svc.directory.add_region(region)
        svc.directory.save_regions()
        return region

    @app.delete("/regions/{region_id}")
    async def delete_region(region_id: str, svc: Services = Depends(get_services)):
        if not svc.directory.remove_region(region_id):
            raise HTTPException(status_code=404, detail=f"Unknown region {region_id}")
        svc.directory.save_regions()
        return {"deleted": True, "region_id": region_id}

    @app.get("/route", response_model=RoutingDecision)
    async def route(
        country: Optional[str] = Query(None, min_length=2, max_length=2),
        x_country: Optional[str] = Header(None, alias="X-Country"),
        svc: Services = Depends(get_services)
    ):
        """Region and origin the request would be sent to"""
        return svc.router.route(x_country or country)

    @app.post("/health-checks", response_model=Dict[str, RegionHealthStatus])
    def run_health_checks(svc: Services = Depends(get_services)):
        """Run one health sweep now (blocking; runs in the threadpool)"""
        return svc.monitor.perform_health_checks()

    @app.get("/health-status", response_model=List[RegionHealthStatus])
    async def health_status(svc: Services = Depends(get_services)):
        return svc.monitor.get_health_status()

    @app.post("/replication", response_model=ReplicationJob, status_code=202)
    async def start_replication(request: ReplicationRequest, svc: Services = Depends(get_services)):
        """Queue a replication job and return it without waiting"""
        for region_id in [request.source_region, *request.target_regions]:
            if region_id not in svc.directory:
                raise HTTPException(status_code=404, detail=f"Unknown region {region_id}")
        return svc.replicator.start_replication(
            request.source_region, request.target_regions, request.paths
        )

    @app.get("/replication", response_model=List[ReplicationJob])
    def list_replication_jobs(
        limit: int = Query(50, ge=1, le=1000),
        svc: Services = Depends(get_services)
    ):
        return svc.replicator.list_jobs(limit)

    @app.get("/replication/{job_id}", response_model=ReplicationJob)
    async def replication_job(job_id: str, svc: Services = Depends(get_services)):
        job = svc.replicator.get_job_status(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Unknown replication job {job_id}")
        return job

    @app.post("/cache/warm", response_model=WarmResponse)
    async def warm_cache(request: CacheWarmRequest, svc: Services = Depends(get_services)):
        regions = svc.cache.warm_cache(request.path, request.content,
                                       request.content_type, request.ttl)
        return WarmResponse(path=request.path, regions=regions)

    @app.get("/cache/{path:path}")
    async def read_cache(
        path: str,
        x_country: Optional[str] = Header(None, alias="X-Country"),
        svc: Services = Depends(get_services)
    ):
        """Cached content for the region this request routes to"""
        cached = svc.cache.get_cached(path, x_country)
        if cached is None:
            return JSONResponse(
                status_code=404,
                content={"detail": "Not cached", "path": path},
                headers={"X-Cache": "MISS"},
            )
        return Response(
            content=cached.content,
            media_type=cached.content_type,
            headers={
                "ETag": cached.etag,
                "X-Cache": "HIT",
                "X-Cache-Region": cached.region_id,
            },
        )

    @app.put("/cache/{path:path}", response_model=CacheEntry)
    async def write_cache(path: str, request: CacheWriteRequest, svc: Services = Depends(get_services)):
        if request.region_id not in svc.directory:
            raise HTTPException(status_code=404, detail=f"Unknown region {request.region_id}")
        return svc.cache.cache(path, request.region_id, request.content,
                               request.content_type, request.ttl)

    @app.delete("/cache/{path:path}", response_model=PurgeResponse)
    async def purge_cache(path: str, svc: Services = Depends(get_services)):
        regions = svc.cache.purge(path)
        return PurgeResponse(path=path, purged=len(regions), regions=regions)

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        if not settings.enable_metrics:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return Response(content=get_metrics(), media_type=get_content_type())

app = create_app()
