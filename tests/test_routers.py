"""HTTP tests for the stats, manager and alerts routers."""

import httpx
import pytest

from casefleet.database import get_db
from casefleet.main import app
from casefleet.models.alert import AlertScope, AlertType
from casefleet.schemas.stats import DailyIncrements, HourlyIncrements
from casefleet.services.alerts import AlertDraft, raise_alert
from casefleet.services.daily_stats import increment_daily
from casefleet.services.hourly_stats import increment_hourly

from .conftest import NOW

DATE = "2026-03-10"


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def test_daily_stats_by_date(client, session):
    await increment_daily(session, "CIV", "app-update", DailyIncrements(processed=4, successful=3, failed=1), NOW)
    await increment_daily(session, "CNT", "app-update", DailyIncrements(processed=1), NOW)

    response = await client.get("/api/v1/stats/daily", params={"date": DATE, "fuero": "CIV"})

    assert response.status_code == 200
    [row] = response.json()
    assert (row["fuero"], row["processed"], row["failed"]) == ("CIV", 4, 1)


async def test_daily_stats_rejects_bad_dates(client):
    assert (await client.get("/api/v1/stats/daily", params={"date": "10/03/2026"})).status_code == 422
    assert (await client.get("/api/v1/stats/daily", params={"start_date": DATE})).status_code == 422


async def test_hourly_slots(client, session):
    await increment_hourly(session, "CIV", "app-update", HourlyIncrements(processed=5), NOW)
    await session.commit()

    response = await client.get(f"/api/v1/stats/hourly/{DATE}")

    slots = response.json()
    assert len(slots) == 24
    assert slots[12]["processed"] == 5


async def test_summary_generate_then_read(client, session):
    await increment_daily(session, "CIV", "app-update", DailyIncrements(processed=10, successful=10), NOW)

    assert (await client.get("/api/v1/stats/summary/2026-03-10")).status_code == 404

    created = await client.post("/api/v1/stats/summary/2026-03-10")
    assert created.status_code == 200
    assert created.json()["totals"]["processed"] == 10

    fetched = await client.get("/api/v1/stats/summary/2026-03-10")
    assert fetched.status_code == 200
    assert fetched.json()["totals"] == created.json()["totals"]


async def test_manager_config_patch(client):
    response = await client.patch("/api/v1/manager/config", json={"max_workers": 5})
    assert response.status_code == 200
    assert response.json()["max_workers"] == 5

    state = (await client.get("/api/v1/manager/state")).json()
    assert state["config"]["max_workers"] == 5

    invalid = await client.patch("/api/v1/manager/config", json={"min_workers": 10})
    assert invalid.status_code == 422


async def test_worker_report(client):
    response = await client.post("/api/v1/manager/workers", json={"workers": {"CIV": 2}})

    assert response.status_code == 200
    assert response.json()["reported_workers"] == {"CIV": 2}


async def test_alert_acknowledge(client, session):
    await raise_alert(
        session,
        AlertScope.daily,
        f"{DATE}:CIV:app-update",
        AlertDraft(type=AlertType.high_error_rate, message="Error rate 12.5% (15/120)"),
        worker_type="app-update",
        period_date=DATE,
        now=NOW,
    )
    await session.commit()

    [alert] = (await client.get("/api/v1/alerts", params={"scope": "daily"})).json()
    assert alert["type"] == "high_error_rate"

    assert (await client.post(f"/api/v1/alerts/{alert['id']}/acknowledge")).status_code == 200
    assert (await client.post(f"/api/v1/alerts/{alert['id']}/acknowledge")).status_code == 404
    assert (await client.get("/api/v1/alerts")).json() == []
