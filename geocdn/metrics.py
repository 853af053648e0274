"""Prometheus metrics"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client import CollectorRegistry

# Create registry
registry = CollectorRegistry()

# Routing metrics
routing_decisions_total = Counter(
    'routing_decisions_total',
    'Total routing decisions',
    ['region', 'reason'],
    registry=registry
)

routing_failures_total = Counter(
    'routing_failures_total',
    'Requests that found no healthy region',
    registry=registry
)

# Health check metrics
health_probes_total = Counter(
    'health_probes_total',
    'Total origin health probes',
    ['region', 'outcome'],
    registry=registry
)

health_probe_duration = Histogram(
    'health_probe_duration_seconds',
    'Origin health probe latency',
    ['region'],
    registry=registry
)

origin_healthy = Gauge(
    'origin_healthy',
    'Origin health flag (1=healthy, 0=unhealthy)',
    ['region', 'origin'],
    registry=registry
)

# Replication metrics
replication_jobs_total = Counter(
    'replication_jobs_total',
    'Replication jobs by final status',
    ['status'],
    registry=registry
)

replication_objects_total = Counter(
    'replication_objects_total',
    'Replicated object writes by outcome',
    ['outcome'],
    registry=registry
)

# Cache metrics
cache_hits_total = Counter(
    'cache_hits_total',
    'Total regional cache hits',
    ['region'],
    registry=registry
)

cache_misses_total = Counter(
    'cache_misses_total',
    'Total regional cache misses',
    ['region'],
    registry=registry
)

def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest(registry)

def get_content_type():
    """Get metrics content type"""
    return CONTENT_TYPE_LATEST
