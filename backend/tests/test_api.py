"""
Supply Tracker Backend: API Endpoint Tests
============================================

What:  Tests the HTTP surface: status codes, camelCase payloads and the
       error envelope {"error", "message", "details", "request_id"}.
How:   httpx AsyncClient over ASGITransport (no network); the app shares
       the test store with the seed fixtures.

What we test:
    ✅ Health check
    ✅ Auth: register, login, verify, change password
    ✅ 400 / 401 / 403 / 404 / 409 mapping
    ✅ Usage write + listing, reports, admin-only endpoints
    ✅ Spreadsheet upload and template download
"""

from decimal import Decimal

import pytest

from supply_tracker.services.spreadsheet import XLSX_MEDIA_TYPE, build_workbook
from supply_tracker.services.supply_service import TEMPLATE_HEADERS

# matches the password seeded in conftest.py
TEST_PASSWORD = "secret-pass"


def assert_error(response, status: int, kind: str):
    assert response.status_code == status, response.text
    body = response.json()
    assert body["error"] == kind
    assert body["message"]
    assert "details" in body
    assert "request_id" in body
    return body


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health_check(self, test_client):
        response = await test_client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/api/health", headers={"X-Request-ID": "trace-123"})

        assert response.headers["X-Request-ID"] == "trace-123"


class TestAuthEndpoints:

    @pytest.mark.asyncio
    async def test_register_then_pending_login(self, test_client, seed):
        response = await test_client.post(
            "/api/auth/register",
            json={"name": "New Nurse", "email": "New@Example.com", "password": "longenough", "facilityId": seed.f1},
        )
        assert response.status_code == 201
        assert response.json()["user"]["isApproved"] is False

        login = await test_client.post(
            "/api/auth/login", json={"email": "new@example.com", "password": "longenough"}
        )
        body = assert_error(login, 401, "invalid_credential")
        assert body["message"] == "Account pending approval"

    @pytest.mark.asyncio
    async def test_login_and_verify(self, test_client, seed):
        login = await test_client.post(
            "/api/auth/login", json={"email": "nurse1@example.com", "password": TEST_PASSWORD}
        )
        assert login.status_code == 200
        token = login.json()["token"]
        assert login.json()["user"]["facilityId"] == seed.f1
        assert "passwordHash" not in login.json()["user"]

        verify = await test_client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})
        assert verify.status_code == 200
        assert verify.json()["email"] == "nurse1@example.com"

    @pytest.mark.asyncio
    async def test_wrong_password(self, test_client, seed):
        response = await test_client.post(
            "/api/auth/login", json={"email": "nurse1@example.com", "password": "nope-nope"}
        )

        assert_error(response, 401, "invalid_credential")

    @pytest.mark.asyncio
    async def test_missing_token(self, test_client, seed):
        response = await test_client.get("/api/patients")

        assert_error(response, 401, "unauthenticated")

    @pytest.mark.asyncio
    async def test_bad_token(self, test_client, seed):
        response = await test_client.get("/api/patients", headers={"Authorization": "Bearer garbage"})

        assert_error(response, 401, "invalid_credential")

    @pytest.mark.asyncio
    async def test_change_password(self, test_client, f1_headers):
        response = await test_client.post(
            "/api/auth/change-password",
            json={"currentPassword": TEST_PASSWORD, "newPassword": "another-pass"},
            headers=f1_headers,
        )
        assert response.status_code == 200

        login = await test_client.post(
            "/api/auth/login", json={"email": "nurse1@example.com", "password": "another-pass"}
        )
        assert login.status_code == 200


class TestUsageEndpoints:

    @pytest.mark.asyncio
    async def test_record_and_list(self, add_patient, test_client, seed, f1_headers):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        body = {
            "patientId": patient_id,
            "supplyId": seed.supply_a,
            "dayOfMonth": 14,
            "quantity": 2,
            "woundDiagnosis": "ulcer",
        }

        first = await test_client.post("/api/usage", json=body, headers=f1_headers)
        second = await test_client.post(
            "/api/usage", json={**body, "quantity": 5, "woundDiagnosis": ""}, headers=f1_headers
        )

        assert first.status_code == 200
        assert first.json()["message"] == "Usage recorded"
        record = second.json()["record"]
        assert record["quantity"] == 5
        assert record["woundDiagnosis"] == "ulcer"
        assert record["supplyCode"] == "600"

        listing = await test_client.get(f"/api/usage/{patient_id}", headers=f1_headers)
        assert listing.status_code == 200
        assert [(r["dayOfMonth"], r["quantity"]) for r in listing.json()] == [(14, 5)]

    @pytest.mark.asyncio
    async def test_day_out_of_range(self, add_patient, test_client, seed, f1_headers):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)

        response = await test_client.post(
            "/api/usage",
            json={"patientId": patient_id, "supplyId": seed.supply_a, "dayOfMonth": 32, "quantity": 1},
            headers=f1_headers,
        )

        assert_error(response, 400, "validation_error")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field, value",
        [("dayOfMonth", True), ("quantity", True), ("quantity", "2")],
    )
    async def test_non_integer_values_rejected(self, add_patient, test_client, seed, f1_headers, field, value):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        body = {"patientId": patient_id, "supplyId": seed.supply_a, "dayOfMonth": 3, "quantity": 1}

        response = await test_client.post("/api/usage", json={**body, field: value}, headers=f1_headers)

        assert_error(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_other_facility_forbidden(self, add_patient, test_client, seed, f1_headers):
        patient_id = await add_patient("Sam Roe", "2025-03", seed.f2)

        response = await test_client.post(
            "/api/usage",
            json={"patientId": patient_id, "supplyId": seed.supply_a, "dayOfMonth": 1, "quantity": 1},
            headers=f1_headers,
        )

        assert_error(response, 403, "forbidden")

    @pytest.mark.asyncio
    async def test_missing_patient(self, test_client, seed, f1_headers):
        response = await test_client.get("/api/usage/99999", headers=f1_headers)

        assert_error(response, 404, "not_found")


class TestPatientEndpoints:

    @pytest.mark.asyncio
    async def test_create_and_list(self, test_client, seed, f1_headers):
        created = await test_client.post(
            "/api/patients",
            json={"name": "Jane Doe", "month": "2025-03", "facilityId": seed.f1},
            headers=f1_headers,
        )
        assert created.status_code == 201
        assert created.json()["facilityName"] == "North Clinic"

        listing = await test_client.get("/api/patients", params={"month": "2025-03"}, headers=f1_headers)
        assert [p["name"] for p in listing.json()] == ["Jane Doe"]

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, add_patient, test_client, seed, f1_headers):
        await add_patient("Jane Doe", "2025-03", seed.f1)

        response = await test_client.post(
            "/api/patients",
            json={"name": "Jane Doe", "month": "2025-03", "facilityId": seed.f1},
            headers=f1_headers,
        )

        assert_error(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_bad_month_rejected(self, test_client, seed, f1_headers):
        response = await test_client.post(
            "/api/patients",
            json={"name": "Jane Doe", "month": "March", "facilityId": seed.f1},
            headers=f1_headers,
        )

        assert_error(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_other_facility_filter_forbidden(self, test_client, seed, f1_headers):
        response = await test_client.get(
            "/api/patients", params={"facilityId": seed.f2}, headers=f1_headers
        )

        assert_error(response, 403, "forbidden")

    @pytest.mark.asyncio
    async def test_delete(self, add_patient, test_client, seed, f1_headers):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)

        response = await test_client.delete(f"/api/patients/{patient_id}", headers=f1_headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Patient deleted successfully"


class TestFacilityEndpoints:

    @pytest.mark.asyncio
    async def test_public_listing_needs_no_token(self, test_client, seed):
        response = await test_client.get("/api/facilities/public")

        assert response.status_code == 200
        assert {f["name"] for f in response.json()} == {"North Clinic", "South Hospital"}

    @pytest.mark.asyncio
    async def test_create_requires_admin(self, test_client, f1_headers):
        response = await test_client.post("/api/facilities", json={"name": "Annex"}, headers=f1_headers)

        assert_error(response, 403, "forbidden")

    @pytest.mark.asyncio
    async def test_delete_blocked_by_patients(self, add_patient, test_client, seed, admin_headers):
        await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_patient("John Roe", "2025-03", seed.f1)

        response = await test_client.delete(f"/api/facilities/{seed.f1}", headers=admin_headers)

        body = assert_error(response, 409, "dependency_blocked")
        assert body["details"]["blocking_count"] == 2

    @pytest.mark.asyncio
    async def test_delete_empty_facility(self, test_client, admin_headers):
        created = await test_client.post("/api/facilities", json={"name": "Annex"}, headers=admin_headers)
        assert created.status_code == 201

        response = await test_client.delete(f"/api/facilities/{created.json()['id']}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Facility deleted successfully"


class TestSupplyEndpoints:

    @pytest.mark.asyncio
    async def test_list_supplies(self, test_client, f1_headers):
        response = await test_client.get("/api/supplies", headers=f1_headers)

        assert response.status_code == 200
        assert [s["code"] for s in response.json()] == ["600", "601", "WC100"]
        assert Decimal(str(response.json()[0]["unitCost"])) == Decimal("3.00")

    @pytest.mark.asyncio
    async def test_create_requires_admin(self, test_client, f1_headers):
        response = await test_client.post(
            "/api/supplies", json={"code": "WC400", "description": "Gauze"}, headers=f1_headers
        )

        assert_error(response, 403, "forbidden")

    @pytest.mark.asyncio
    async def test_template_download(self, test_client, admin_headers):
        response = await test_client.get("/api/supplies/template", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        assert "supplies_template.xlsx" in response.headers["content-disposition"]

    @pytest.mark.asyncio
    async def test_import_upload(self, test_client, admin_headers):
        raw = build_workbook("Supplies", TEMPLATE_HEADERS, [["WC500", "Transparent Film", "A6257", 2.5]])

        response = await test_client.post(
            "/api/supplies/import",
            files={"file": ("supplies.xlsx", raw, XLSX_MEDIA_TYPE)},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Import completed: 1 successful, 0 errors"

    @pytest.mark.asyncio
    async def test_retire_range(self, add_patient, add_usage, test_client, seed, admin_headers):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage((patient_id, seed.supply_a, 1, 2, None))

        response = await test_client.post(
            "/api/supplies/retire-range", json={"firstCode": 600, "lastCode": 601}, headers=admin_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["codes"] == ["600", "601"]
        assert body["removedUsage"] == 1
        assert body["touchedPatients"] == 1

    @pytest.mark.asyncio
    async def test_retire_range_reversed_bounds(self, test_client, admin_headers):
        response = await test_client.post(
            "/api/supplies/retire-range", json={"firstCode": 700, "lastCode": 600}, headers=admin_headers
        )

        assert_error(response, 400, "validation_error")


class TestReportEndpoints:

    @pytest.mark.asyncio
    async def test_dashboard_payload(self, add_patient, add_usage, test_client, seed, admin_headers):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage(
            (patient_id, seed.supply_a, 1, 2, "ulcer"),
            (patient_id, seed.supply_b, 2, 1, None),
        )

        response = await test_client.get("/api/reports/dashboard", headers=admin_headers)

        assert response.status_code == 200
        row = response.json()[0]
        assert row["totalUnits"] == 3
        assert Decimal(str(row["totalCost"])) == Decimal("11.00")
        assert row["supplyCodes"] == "600, 601"
        assert row["woundDiagnoses"] == "ulcer"

    @pytest.mark.asyncio
    async def test_non_admin_reports_omit_billing_columns(
        self, add_patient, add_usage, test_client, seed, f1_headers
    ):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage((patient_id, seed.supply_a, 1, 2, "ulcer"))

        dashboard = await test_client.get("/api/reports/dashboard", headers=f1_headers)
        itemized = await test_client.get("/api/reports/itemized", headers=f1_headers)

        row = dashboard.json()[0]
        assert row["totalUnits"] == 2
        assert row["woundDiagnoses"] == "ulcer"
        assert row["totalCost"] is None
        assert row["supplyCodes"] is None
        assert row["hcpcsCodes"] is None
        line = itemized.json()[0]
        assert line["totalUnits"] == 2
        assert [line[k] for k in ("supplyCode", "hcpcs", "unitCost", "lineCost")] == [None] * 4

    @pytest.mark.asyncio
    async def test_itemized_and_overview(self, add_patient, add_usage, test_client, seed, admin_headers):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage((patient_id, seed.supply_b, 2, 4, None))

        itemized = await test_client.get("/api/reports/itemized", headers=admin_headers)
        overview = await test_client.get(
            "/api/reports/overview", params={"facilityId": seed.f1}, headers=admin_headers
        )

        assert Decimal(str(itemized.json()[0]["lineCost"])) == Decimal("20.00")
        assert overview.json()["totalPatients"] == 1
        assert overview.json()["totalUnits"] == 4

    @pytest.mark.asyncio
    async def test_other_facility_forbidden(self, test_client, seed, f1_headers):
        response = await test_client.get(
            "/api/reports/dashboard", params={"facilityId": seed.f2}, headers=f1_headers
        )

        assert_error(response, 403, "forbidden")


class TestAdminEndpoints:

    @pytest.mark.asyncio
    async def test_statistics(self, test_client, admin_headers):
        response = await test_client.get("/api/statistics", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["totalUsers"] == 4
        assert data["pendingUsers"] == 1
        assert data["totalSupplies"] == 3

    @pytest.mark.asyncio
    async def test_statistics_requires_admin(self, test_client, f1_headers):
        response = await test_client.get("/api/statistics", headers=f1_headers)

        assert_error(response, 403, "forbidden")

    @pytest.mark.asyncio
    async def test_approve_user(self, test_client, seed, admin_headers):
        response = await test_client.post(f"/api/users/{seed.pending}/approve", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["isApproved"] is True

    @pytest.mark.asyncio
    async def test_approve_missing_user(self, test_client, admin_headers):
        response = await test_client.post("/api/users/99999/approve", headers=admin_headers)

        assert_error(response, 404, "not_found")
