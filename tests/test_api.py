import httpx
import pytest
from fastapi.testclient import TestClient
from geocdn.health import HealthMonitor
from geocdn.main import build_services, create_app
from tests.conftest import make_origin, mock_client

@pytest.fixture
def services(kv, objects, directory):
    monitor = HealthMonitor(directory, client=mock_client(lambda request: httpx.Response(200)))
    return build_services(kv, objects, directory=directory, monitor=monitor)

@pytest.fixture
def test_client(services):
    with TestClient(create_app(services)) as client:
        yield client

def test_health(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "geocdn"
    assert data["total_regions"] == 3
    assert data["healthy_regions"] == 3

def test_route_with_header(test_client):
    """X-Country header picks the serving region"""
    response = test_client.get("/route", headers={"X-Country": "FR"})
    assert response.status_code == 200
    data = response.json()
    assert data["region"]["id"] == "eu-west"
    assert data["origin"]["id"] == "euw-1"
    assert data["reason"] == "geo"
    assert data["fallback"] is False

def test_route_with_query(test_client):
    response = test_client.get("/route", params={"country": "JP"})
    assert response.json()["region"]["id"] == "ap-northeast"

def test_route_unavailable(test_client, directory):
    """No healthy region maps to 503"""
    for region in directory.regions():
        for origin in region.origins:
            origin.healthy = False

    response = test_client.get("/route", params={"country": "ZA"})
    assert response.status_code == 503
    assert "No healthy regions" in response.json()["detail"]

def test_put_and_delete_region(test_client, kv):
    region = {
        "id": "sa-east",
        "name": "South America East",
        "code": "sa-east-1",
        "countries": ["br", "AR"],
        "origins": [make_origin("sae-1").model_dump(mode="json")],
    }
    response = test_client.put("/regions/sa-east", json=region)
    assert response.status_code == 200
    assert response.json()["countries"] == ["BR", "AR"]
    assert "sa-east" in kv.get("cdn:regions")

    regions = test_client.get("/regions").json()
    assert [r["id"] for r in regions][-1] == "sa-east"

    assert test_client.delete("/regions/sa-east").status_code == 200
    assert test_client.delete("/regions/sa-east").status_code == 404

def test_put_region_validation(test_client):
    response = test_client.put("/regions/bad", json={
        "id": "bad", "name": "Bad", "code": "bad-1",
        "origins": [{"id": "o", "url": "http://o", "weight": -2}],
    })
    assert response.status_code == 422

    response = test_client.put("/regions/other", json={"id": "bad", "name": "Bad", "code": "bad-1"})
    assert response.status_code == 400

def test_health_check_sweep(test_client):
    response = test_client.post("/health-checks")
    assert response.status_code == 200
    data = response.json()
    assert set(data) == {"us-east", "eu-west", "ap-northeast"}
    assert data["us-east"]["available_origins"] == 2
    assert data["us-east"]["last_check"] is not None

    statuses = test_client.get("/health-status").json()
    assert len(statuses) == 3

def test_replication_flow(test_client, services, objects):
    """Start a job, wait for it, then find it by id and in the listing"""
    objects.put("us-east/app.js", b"console.log(1)", content_type="text/javascript")

    response = test_client.post("/replication", json={
        "source_region": "us-east",
        "target_regions": ["eu-west"],
        "paths": ["app.js"],
    })
    assert response.status_code == 202
    job_id = response.json()["id"]

    services.replicator.wait(job_id, timeout=5)

    job = test_client.get(f"/replication/{job_id}").json()
    assert job["status"] == "completed"
    assert job["progress"] == 100

    listed = test_client.get("/replication").json()
    assert [j["id"] for j in listed] == [job_id]
    assert objects.get("eu-west/app.js").content == b"console.log(1)"

def test_replication_unknown_region(test_client):
    response = test_client.post("/replication", json={
        "source_region": "us-east",
        "target_regions": ["mars-1"],
        "paths": ["app.js"],
    })
    assert response.status_code == 404

def test_replication_unknown_job(test_client):
    assert test_client.get("/replication/does-not-exist").status_code == 404

def test_cache_endpoints(test_client):
    response = test_client.put("/cache/css/site.css", json={
        "region_id": "us-east", "content": "body{}", "content_type": "text/css",
    })
    assert response.status_code == 200

    hit = test_client.get("/cache/css/site.css", headers={"X-Country": "US"})
    assert hit.status_code == 200
    assert hit.text == "body{}"
    assert hit.headers["X-Cache"] == "HIT"
    assert hit.headers["X-Cache-Region"] == "us-east"
    assert hit.headers["ETag"] == response.json()["etag"]

    miss = test_client.get("/cache/css/site.css", headers={"X-Country": "GB"})
    assert miss.status_code == 404
    assert miss.headers["X-Cache"] == "MISS"

    purged = test_client.delete("/cache/css/site.css").json()
    assert purged["purged"] == 3
    assert test_client.get("/cache/css/site.css", headers={"X-Country": "US"}).status_code == 404

def test_cache_warm(test_client):
    response = test_client.post("/cache/warm", json={
        "path": "robots.txt", "content": "User-agent: *", "content_type": "text/plain",
    })
    assert response.status_code == 200
    assert response.json()["regions"] == ["us-east", "eu-west", "ap-northeast"]

    hit = test_client.get("/cache/robots.txt", headers={"X-Country": "JP"})
    assert hit.headers["X-Cache-Region"] == "ap-northeast"

def test_metrics(test_client):
    test_client.get("/route", headers={"X-Country": "US"})
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert "routing_decisions_total" in response.text
