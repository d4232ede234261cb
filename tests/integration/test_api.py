"""Integration tests for API endpoints."""
import pytest
from httpx import AsyncClient, ASGITransport

from md2pdf.dependencies import get_output_dir
from md2pdf.engines.manager import EngineManager
from md2pdf.engines.models import EngineManagerConfig
from md2pdf.engines.strategies import HealthFirstSelectionStrategy
from md2pdf.main import create_app
from md2pdf.monitoring import EngineMonitoringService, MonitorConfig
from md2pdf.testing import MockEngine, MockEngineFactory


@pytest.fixture
def engines():
    return {
        "primary": MockEngine("primary"),
        "fallback": MockEngine("fallback"),
    }


@pytest.fixture
async def app(engines, output_dir):
    application = create_app()
    # Lifespan doesn't run in test; wire the engine layer by hand.
    manager = EngineManager(
        EngineManagerConfig(
            primary_engine="primary",
            fallback_engines=["fallback"],
            health_check_interval=0,
            retry_delay=0,
        ),
        MockEngineFactory(engines),
        HealthFirstSelectionStrategy(),
    )
    await manager.initialize()
    application.state.engine_manager = manager
    application.state.engine_monitor = EngineMonitoringService(MonitorConfig(), manager)
    application.dependency_overrides[get_output_dir] = lambda: output_dir
    yield application
    await manager.cleanup()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "md2pdf"


@pytest.mark.asyncio
async def test_list_engines(client):
    response = await client.get("/api/v1/engines")
    assert response.status_code == 200
    data = response.json()
    assert data["available"] == ["primary", "fallback"]
    assert data["healthy"] == ["primary", "fallback"]
    assert data["statuses"]["primary"]["is_healthy"] is True
    assert data["uptime"] >= 0


@pytest.mark.asyncio
async def test_generate_pdf(client, output_dir):
    response = await client.post(
        "/api/v1/generate",
        json={"html_content": "<h1>Hello</h1>", "filename": "hello", "title": "Hello"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["output_path"] == str(output_dir / "hello.pdf")
    assert data["metadata"]["engine_used"] == "primary"


@pytest.mark.asyncio
async def test_generate_pdf_generates_filename(client, output_dir):
    response = await client.post("/api/v1/generate", json={"html_content": "<p>x</p>"})
    data = response.json()
    assert data["success"] is True
    assert data["output_path"].startswith(str(output_dir / "document_"))
    assert data["output_path"].endswith(".pdf")


@pytest.mark.asyncio
async def test_generate_pdf_strips_directories(client, output_dir):
    response = await client.post(
        "/api/v1/generate",
        json={"html_content": "<p>x</p>", "filename": "../../etc/report.pdf"},
    )
    assert response.json()["output_path"] == str(output_dir / "report.pdf")


@pytest.mark.asyncio
async def test_generate_pdf_falls_back(client, engines):
    engines["primary"].should_fail_generation = True

    response = await client.post("/api/v1/generate", json={"html_content": "<p>x</p>"})
    data = response.json()
    assert response.status_code == 200
    assert data["success"] is True
    assert data["metadata"]["engine_used"] == "fallback"


@pytest.mark.asyncio
async def test_generate_pdf_failure_in_body(client, engines):
    for engine in engines.values():
        engine.should_fail_generation = True

    response = await client.post("/api/v1/generate", json={"html_content": "<p>x</p>"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error"]


@pytest.mark.asyncio
async def test_generate_pdf_validation(client):
    response = await client.post("/api/v1/generate", json={"html_content": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_engine_metrics(client):
    await client.post("/api/v1/generate", json={"html_content": "<p>x</p>"})

    response = await client.get("/api/v1/engines/metrics")
    assert response.status_code == 200
    metrics = response.json()["metrics"]
    assert metrics["primary"]["total_tasks"] == 1
    assert metrics["primary"]["successful_tasks"] == 1


@pytest.mark.asyncio
async def test_force_health_check(client, engines):
    engines["fallback"].healthy = False

    response = await client.post("/api/v1/engines/health-check", params={"engine": "fallback"})
    assert response.status_code == 200
    assert response.json()["healthy"] == ["primary"]


@pytest.mark.asyncio
async def test_force_health_check_unknown_engine(client):
    response = await client.post("/api/v1/engines/health-check", params={"engine": "missing"})
    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "UnknownEngineError"
    assert "missing" in data["detail"]


@pytest.mark.asyncio
async def test_alerts(client, app, engines):
    engines["fallback"].healthy = False
    await app.state.engine_manager.force_health_check()
    await app.state.engine_monitor.perform_health_checks()

    response = await client.get("/api/v1/engines/alerts")
    assert response.status_code == 200
    data = response.json()
    assert data["active"] == 1
    alert_id = data["alerts"][0]["id"]

    response = await client.post(f"/api/v1/engines/alerts/{alert_id}/acknowledge")
    assert response.status_code == 200
    assert response.json()["resolved"] is True


@pytest.mark.asyncio
async def test_acknowledge_unknown_alert(client):
    response = await client.post("/api/v1/engines/alerts/alert_99/acknowledge")
    assert response.status_code == 404
    assert response.json()["error"] == "AlertNotFoundError"


@pytest.mark.asyncio
async def test_request_id_header(client):
    generated = await client.get("/api/v1/health")
    echoed = await client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})

    assert len(generated.headers["X-Request-ID"]) == 12
    assert echoed.headers["X-Request-ID"] == "abc123"


@pytest.mark.asyncio
async def test_error_body_names_engine(client):
    response = await client.post("/api/v1/engines/health-check", params={"engine": "missing"})
    assert response.json()["engine"] == "missing"
