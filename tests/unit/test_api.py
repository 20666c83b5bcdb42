"""
Unit Tests - HTTP API
"""
import pytest
from httpx import ASGITransport, AsyncClient

from scout_analytics.refresh import ViewStore
from scout_analytics.serving.api.main import create_app

ADMIN = {"X-User-ID": "admin1", "X-User-Role": "admin"}
ANALYST = {"X-User-ID": "analyst1", "X-User-Role": "analyst"}
MANAGER = {"X-User-ID": "manager1", "X-User-Role": "store_manager"}


@pytest.fixture
def app(test_settings, seeded_session_factory, as_of):
    return create_app(
        settings=test_settings,
        session_factory=seeded_session_factory,
        view_store=ViewStore(),
        clock=lambda: as_of,
    )


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def published(app, as_of):
    report = await app.state.scheduler.refresh_all(as_of=as_of)
    assert report.success
    return report


class TestHealthEndpoints:
    """Tests for health endpoints"""

    async def test_health_degraded_before_publish(self, client):
        """Test unpublished views degrade health"""
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["views"]["published"] == 0

    async def test_health_after_publish(self, client, published):
        """Test every published view makes the service healthy"""
        response = await client.get("/api/v1/health")
        assert response.json()["status"] == "healthy"

    async def test_liveness_and_readiness(self, client):
        """Test orchestration probes"""
        assert (await client.get("/api/v1/health/live")).json() == {"status": "alive"}
        assert (await client.get("/api/v1/health/ready")).json() == {"status": "ready"}

    async def test_system_health(self, client):
        """Test operational report with alerts"""
        response = await client.get("/api/v1/health/system")

        assert response.status_code == 200
        body = response.json()
        assert body["health"]["health_score"] == 80.0
        assert [a["alert_type"] for a in body["alerts"]] == ["DEVICE_CONNECTIVITY"]

    async def test_request_id_header(self, client):
        """Test request id and timing headers"""
        response = await client.get("/api/v1/health/live", headers={"X-Request-ID": "req-1"})

        assert response.headers["X-Request-ID"] == "req-1"
        assert response.headers["X-Response-Time"].endswith("ms")

    async def test_info(self, client):
        """Test API info endpoint"""
        body = (await client.get("/api/v1/info")).json()
        assert body["environment"] == "testing"


class TestViewEndpoints:
    """Tests for view reads"""

    async def test_view_not_ready(self, client):
        """Test 503 with Retry-After before the first refresh"""
        response = await client.get("/api/v1/views/daily_sales", headers=ANALYST)

        assert response.status_code == 503
        assert response.json()["error"] == "view_not_ready"
        assert "Retry-After" in response.headers

    async def test_read_view(self, client, published):
        """Test a scoped page of a view"""
        response = await client.get("/api/v1/views/daily_sales", headers=ANALYST)

        assert response.status_code == 200
        body = response.json()
        assert body["total_rows"] == 4
        assert body["version"] == 1
        assert body["scope"]["role"] == "analyst"

    async def test_query_parameters(self, client, published):
        """Test filters and pagination from the query string"""
        response = await client.get(
            "/api/v1/views/daily_sales",
            params={"region": "NCR", "page_size": 1},
            headers=ANALYST,
        )

        body = response.json()
        assert body["total_rows"] == 3
        assert len(body["rows"]) == 1

    async def test_list_views(self, client, published):
        """Test the listing shows publication state"""
        response = await client.get("/api/v1/views", headers=ANALYST)

        assert response.status_code == 200
        assert all(view["published"]["version"] == 1 for view in response.json())

    async def test_unsupported_filter(self, client, published):
        """Test 400 for a filter the view has no column for"""
        response = await client.get("/api/v1/views/daily_sales", params={"brand": "Alaska"}, headers=ANALYST)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_query"

    async def test_invalid_date_range(self, client, published):
        """Test 422 when start is after end"""
        response = await client.get(
            "/api/v1/views/daily_sales",
            params={"start_date": "2025-06-18", "end_date": "2025-06-01"},
            headers=ANALYST,
        )
        assert response.status_code == 422

    async def test_unknown_view(self, client):
        """Test 404 for an unregistered view"""
        response = await client.get("/api/v1/views/nope", headers=ANALYST)

        assert response.status_code == 404
        assert response.json()["error"] == "unknown_view"

    async def test_analyst_view_window(self, client, published):
        """Test 403 when a view aggregates beyond the analyst window"""
        response = await client.get("/api/v1/views/customer_segments", headers=ANALYST)

        assert response.status_code == 403
        assert response.json()["reason"] == "view_window_exceeds_role"


class TestCallerIdentity:
    """Tests for caller headers"""

    async def test_missing_headers(self, client):
        """Test identity headers are required"""
        response = await client.get("/api/v1/views/daily_sales")
        assert response.status_code == 422

    async def test_unknown_role(self, client):
        """Test 401 for an unknown role"""
        response = await client.get(
            "/api/v1/views/daily_sales",
            headers={"X-User-ID": "x", "X-User-Role": "superuser"},
        )
        assert response.status_code == 401

    async def test_outside_business_hours(self, test_settings, seeded_session_factory, as_of):
        """Test 403 for an analyst at night"""
        app = create_app(
            settings=test_settings,
            session_factory=seeded_session_factory,
            view_store=ViewStore(),
            clock=lambda: as_of.replace(hour=22),
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/api/v1/views/daily_sales", headers=ANALYST)

        assert response.status_code == 403
        assert response.json() == {
            "error": "access_denied",
            "reason": "outside_business_hours",
            "detail": "analyst access is limited to 08:00-20:59",
        }


class TestStoreManagerFlow:
    """Tests for grant management over HTTP"""

    async def test_grant_then_read(self, client, published):
        """Test a manager can read only after a grant and only store views"""
        response = await client.get("/api/v1/views/daily_sales", headers=MANAGER)
        assert response.status_code == 403
        assert response.json()["reason"] == "no_store_grants"

        response = await client.post(
            "/api/v1/admin/grants",
            json={"user_id": "manager1", "store_id": 1},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["granted_by"] == "admin1"

        response = await client.get("/api/v1/views/daily_sales", headers=MANAGER)
        assert response.status_code == 200
        assert response.json()["total_rows"] == 1

        response = await client.get("/api/v1/views/product_performance", headers=MANAGER)
        assert response.status_code == 403
        assert response.json()["reason"] == "view_not_store_scoped"

    async def test_expired_offset_grant(self, client, published):
        """Test a grant already expired in UTC gives no access when sent with an offset"""
        response = await client.post(
            "/api/v1/admin/grants",
            json={"user_id": "manager1", "store_id": 1, "expires_at": "2025-06-18T19:00:00+08:00"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["expires_at"] == "2025-06-18T11:00:00"

        response = await client.get("/api/v1/views/daily_sales", headers=MANAGER)
        assert response.status_code == 403
        assert response.json()["reason"] == "no_store_grants"

    async def test_revoke(self, client):
        """Test revoking an existing and a missing grant"""
        await client.post("/api/v1/admin/grants", json={"user_id": "manager1", "store_id": 2}, headers=ADMIN)

        response = await client.delete("/api/v1/admin/grants/manager1/2", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["revoked"] is True

        response = await client.delete("/api/v1/admin/grants/manager1/2", headers=ADMIN)
        assert response.status_code == 404

    async def test_grant_unknown_store(self, client):
        """Test 404 for a store that does not exist"""
        response = await client.post("/api/v1/admin/grants", json={"user_id": "m", "store_id": 77}, headers=ADMIN)
        assert response.status_code == 404

    async def test_analyst_cannot_grant(self, client):
        """Test 403 when the caller may not manage the store"""
        response = await client.post("/api/v1/admin/grants", json={"user_id": "m", "store_id": 1}, headers=ANALYST)

        assert response.status_code == 403
        assert response.json()["reason"] == "grant_not_permitted"


class TestAdminEndpoints:
    """Tests for manual triggers"""

    async def test_admin_required(self, client):
        """Test non-admins are refused"""
        response = await client.post("/api/v1/admin/refresh", json={}, headers=ANALYST)

        assert response.status_code == 403
        assert response.json()["reason"] == "admin_required"

    async def test_manual_refresh(self, client):
        """Test a cadence refresh returns the run report"""
        response = await client.post("/api/v1/admin/refresh", json={"cadence": "hourly"}, headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["trigger"] == "manual"
        assert sorted(o["view_name"] for o in body["outcomes"]) == [
            "daily_sales",
            "hourly_patterns",
            "store_performance",
        ]

    async def test_manual_single_view_refresh(self, client):
        """Test a single view refresh returns its outcome"""
        response = await client.post("/api/v1/admin/refresh", json={"view": "daily_sales"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["status"] == "succeeded"

    async def test_manual_detection(self, client):
        """Test a detection run returns its summary"""
        response = await client.post("/api/v1/admin/anomalies/detect", json={}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["status"] == "succeeded"

    async def test_purge_validation(self, client):
        """Test retention below one month is rejected"""
        response = await client.post("/api/v1/admin/purge", json={"retention_months": 0}, headers=ADMIN)
        assert response.status_code == 422

    async def test_list_anomalies(self, client):
        """Test the anomaly listing with no findings"""
        response = await client.get("/api/v1/anomalies", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["total"] == 0


class TestInsightEndpoints:
    """Tests for insight reads"""

    async def test_market_share(self, client):
        """Test brand share from the query string"""
        response = await client.get(
            "/api/v1/insights/market-share",
            params={"brand": "Alaska", "days": 30},
            headers=ANALYST,
        )

        assert response.status_code == 200
        rows = response.json()["rows"]
        assert [row["region_name"] for row in rows] == ["NCR"]
        assert rows[0]["market_share_percent"] == pytest.approx(42.98)

    async def test_market_share_refused_for_manager(self, client):
        """Test 403 for a store manager"""
        response = await client.get("/api/v1/insights/market-share", headers=MANAGER)

        assert response.status_code == 403
        assert response.json()["reason"] == "insight_not_store_scoped"

    async def test_market_share_window(self, client):
        """Test 403 when the lookback exceeds the analyst window"""
        response = await client.get("/api/v1/insights/market-share", params={"days": 365}, headers=ANALYST)

        assert response.status_code == 403
        assert response.json()["reason"] == "insight_window_exceeds_role"

    async def test_customers_before_publish(self, client):
        """Test 503 until customer_segments is published"""
        response = await client.get("/api/v1/insights/customers", headers=ADMIN)
        assert response.status_code == 503

    async def test_customers(self, client, published):
        """Test the segment summary for an admin"""
        response = await client.get("/api/v1/insights/customers", headers=ADMIN)

        assert response.status_code == 200
        assert sum(row["customer_count"] for row in response.json()["rows"]) == 2

    async def test_customers_refused_for_analyst(self, client, published):
        """Test 403 when the segment view is wider than the analyst window"""
        response = await client.get("/api/v1/insights/customers", headers=ANALYST)

        assert response.status_code == 403
        assert response.json()["reason"] == "view_window_exceeds_role"
