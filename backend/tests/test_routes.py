# Overview: Pytest coverage for the HTTP surface: tenant context, status codes and payloads.

"""
Route Tests

Every /api route requires the caller-injected X-Org-Id header:
- missing / malformed header -> 401
- unknown or inactive organization -> 404
- rows owned by another organization -> 404 (never 403, never leaked)
"""

from datetime import date

from inventory_engine.services import allocation_service


def _headers(org) -> dict:
    return {"X-Org-Id": str(org.id)}


def _create_allocation(client, org, variant, day="2026-03-01", **extra):
    payload = {"variant_id": variant.id, "scope": {"type": "date", "date": day}, "quantity": 20}
    payload.update(extra)
    return client.post("/api/allocations", json=payload, headers=_headers(org))


class TestTenantContext:

    def test_missing_header_is_401(self, client, db_session, org_a):
        response = client.get("/api/allocations/1")
        assert response.status_code == 401

    def test_non_integer_header_is_401(self, client, db_session):
        response = client.get("/api/allocations/1", headers={"X-Org-Id": "acme"})
        assert response.status_code == 401

    def test_inactive_org_is_404(self, client, db_session, org_a):
        org_a.is_active = False
        db_session.commit()
        response = client.get("/api/allocations/1", headers=_headers(org_a))
        assert response.status_code == 404

    def test_foreign_bucket_is_404(self, client, db_session, org_a, org_b, variant_a):
        created = _create_allocation(client, org_a, variant_a).get_json()
        response = client.get(f"/api/allocations/{created['id']}", headers=_headers(org_b))
        assert response.status_code == 404


class TestAllocationRoutes:

    def test_create_single_scope(self, client, db_session, org_a, variant_a):
        response = _create_allocation(client, org_a, variant_a)
        assert response.status_code == 201
        data = response.get_json()
        assert data["available"] == 20
        assert data["status"] == "OPEN"
        assert data["scope"]["type"] == "date"

    def test_duplicate_scope_is_409(self, client, db_session, org_a, variant_a):
        _create_allocation(client, org_a, variant_a)
        response = _create_allocation(client, org_a, variant_a)
        assert response.status_code == 409
        assert response.get_json()["code"] == "duplicate_scope"

    def test_create_range_reports_items(self, client, db_session, org_a, variant_a):
        payload = {"variant_id": variant_a.id, "date_from": "2026-03-01", "date_to": "2026-03-04", "quantity": 5}
        first = client.post("/api/allocations", json=payload, headers=_headers(org_a))
        assert first.status_code == 201
        assert first.get_json()["created"] == 4

        again = client.post("/api/allocations", json=payload, headers=_headers(org_a))
        assert again.status_code == 200
        assert again.get_json()["skipped"] == 4

    def test_unknown_field_is_400(self, client, db_session, org_a, variant_a):
        response = _create_allocation(client, org_a, variant_a, booked=5)
        assert response.status_code == 400

    def test_scope_and_range_together_is_400(self, client, db_session, org_a, variant_a):
        response = _create_allocation(client, org_a, variant_a, date_from="2026-03-01", date_to="2026-03-02")
        assert response.status_code == 400

    def test_reserve_shortfall_is_409(self, client, db_session, org_a, variant_a):
        bucket_id = _create_allocation(client, org_a, variant_a).get_json()["id"]
        response = client.post(
            f"/api/allocations/{bucket_id}/reserve", json={"quantity": 25}, headers=_headers(org_a)
        )
        assert response.status_code == 409
        body = response.get_json()
        assert body["requested"] == 25
        assert body["available"] == 20
        assert body["shortfall"] == 5

    def test_reserve_confirm_release_flow(self, client, db_session, org_a, variant_a):
        bucket_id = _create_allocation(client, org_a, variant_a).get_json()["id"]

        held = client.post(f"/api/allocations/{bucket_id}/reserve", json={"quantity": 3}, headers=_headers(org_a))
        assert held.status_code == 201
        reservation_id = held.get_json()["id"]

        confirmed = client.post(f"/api/reservations/{reservation_id}/confirm", headers=_headers(org_a))
        assert confirmed.status_code == 200
        assert confirmed.get_json()["status"] == "CONFIRMED"

        released = client.post(f"/api/reservations/{reservation_id}/release", json={}, headers=_headers(org_a))
        assert released.status_code == 409

        bucket = client.get(f"/api/allocations/{bucket_id}", headers=_headers(org_a)).get_json()
        assert bucket["booked"] == 3
        assert bucket["available"] == 17

    def test_delete_allocation(self, client, db_session, org_a, variant_a):
        bucket_id = _create_allocation(client, org_a, variant_a).get_json()["id"]
        client.post(f"/api/allocations/{bucket_id}/reserve", json={"quantity": 1}, headers=_headers(org_a))

        refused = client.delete(f"/api/allocations/{bucket_id}", headers=_headers(org_a))
        assert refused.status_code == 409

    def test_pool_routes(self, client, db_session, org_a, variant_a):
        created = client.post("/api/pools", json={"name": "Block A", "quantity": 12}, headers=_headers(org_a))
        assert created.status_code == 201
        pool_id = created.get_json()["id"]

        _create_allocation(client, org_a, variant_a, quantity=None, inventory_pool_id=pool_id)
        pool = client.get(f"/api/pools/{pool_id}", headers=_headers(org_a)).get_json()
        assert pool["available"] == 12
        assert len(pool["member_bucket_ids"]) == 1


class TestRateRoutes:

    def _create_master(self, client, org, variant):
        return client.post("/api/rate-plans", json={
            "variant_id": variant.id,
            "currency": "EUR",
            "valid_from": "2026-01-01",
            "valid_to": "2026-12-31",
            "inventory_model": "freesale",
            "preferred": True,
            "occupancies": [
                {"min_occupancy": 1, "max_occupancy": 1, "pricing_model": "fixed", "base_amount": "100.00"},
                {
                    "min_occupancy": 2,
                    "max_occupancy": 4,
                    "pricing_model": "base_plus_pax",
                    "base_amount": "120.00",
                    "per_person_amount": "30.00",
                },
            ],
        }, headers=_headers(org))

    def test_create_and_price(self, client, db_session, org_a, variant_a):
        created = self._create_master(client, org_a, variant_a)
        assert created.status_code == 201
        plan_id = created.get_json()["id"]

        price = client.get(f"/api/rate-plans/{plan_id}/price?pax=3", headers=_headers(org_a))
        assert price.status_code == 200
        assert price.get_json()["amount"] == "150.00"

        missing_band = client.get(f"/api/rate-plans/{plan_id}/price?pax=9", headers=_headers(org_a))
        assert missing_band.status_code == 400

    def test_resolve_master(self, client, db_session, org_a, variant_a):
        self._create_master(client, org_a, variant_a)
        response = client.get(
            f"/api/rate-plans/master?variant_id={variant_a.id}&date=2026-05-01&pax=2", headers=_headers(org_a)
        )
        assert response.status_code == 200
        assert response.get_json()["sell_price"] == "120.00"

        none_found = client.get(
            f"/api/rate-plans/master?variant_id={variant_a.id}&date=2027-05-01", headers=_headers(org_a)
        )
        assert none_found.status_code == 404

    def test_invalid_master_is_409(self, client, db_session, org_a, variant_a):
        response = client.post("/api/rate-plans", json={
            "variant_id": variant_a.id,
            "currency": "EUR",
            "valid_from": "2026-01-01",
            "valid_to": "2026-12-31",
            "inventory_model": "committed",
            "occupancies": [{"min_occupancy": 1, "max_occupancy": 2, "base_amount": "50.00"}],
        }, headers=_headers(org_a))
        assert response.status_code == 409


class TestAvailabilityRoutes:

    def test_generate_then_query(self, client, db_session, org_a, variant_a):
        generated = client.post("/api/availability/generate", json={
            "variant_ids": [variant_a.id],
            "date_from": "2026-04-01",
            "date_to": "2026-04-03",
            "quantity": 8,
        }, headers=_headers(org_a))
        assert generated.status_code == 200
        assert generated.get_json()["results"][0]["created"] == 3

        response = client.get(
            f"/api/availability?variant_id={variant_a.id}&date_from=2026-04-01&date_to=2026-04-03",
            headers=_headers(org_a),
        )
        assert response.status_code == 200
        data = response.get_json()
        assert len(data["days"]) == 3
        assert data["stats"]["total_available"] == 24

    def test_bulk_update(self, client, db_session, org_a, variant_a):
        client.post("/api/availability/generate", json={
            "variant_ids": [variant_a.id], "date_from": "2026-04-01", "date_to": "2026-04-02", "quantity": 8,
        }, headers=_headers(org_a))

        response = client.post("/api/availability/bulk-update", json={
            "variant_id": variant_a.id,
            "date_from": "2026-04-01",
            "date_to": "2026-04-03",
            "action": "CLOSE",
        }, headers=_headers(org_a))
        assert response.status_code == 200
        assert [r["status"] for r in response.get_json()["results"]] == ["success", "success", "skipped"]

    def test_bulk_update_bad_action_is_400(self, client, db_session, org_a, variant_a):
        response = client.post("/api/availability/bulk-update", json={
            "variant_id": variant_a.id, "date_from": "2026-04-01", "date_to": "2026-04-03", "action": "PURGE",
        }, headers=_headers(org_a))
        assert response.status_code == 400


class TestSelectionRoutes:

    def test_select_and_confirm(self, client, db_session, org_a, variant_a, supplier_a, make_bucket):
        from inventory_engine.services import rate_service

        for supplier_id, amount, model, preferred in ((None, "200.00", "freesale", True), (supplier_a.id, "120.00", "committed", False)):
            rate_service.create_rate_plan(
                org_id=org_a.id,
                variant_id=variant_a.id,
                supplier_id=supplier_id,
                currency="EUR",
                valid_from=date(2026, 1, 1),
                valid_to=date(2026, 12, 31),
                occupancies=[{"min_occupancy": 1, "max_occupancy": 4, "base_amount": amount}],
                inventory_model=model,
                preferred=preferred,
            )
        make_bucket(org_a, variant_a, supplier=supplier_a, quantity=5)

        response = client.post("/api/selection", json={
            "variant_id": variant_a.id, "date": "2026-03-01", "pax_count": 2, "demand_qty": 2,
        }, headers=_headers(org_a))
        assert response.status_code == 201
        body = response.get_json()
        assert body["total_margin"] == "160.00"

        confirmed = client.post(f"/api/selection/{body['selection_ref']}/confirm", headers=_headers(org_a))
        assert confirmed.status_code == 200
        assert [r["status"] for r in confirmed.get_json()["reservations"]] == ["CONFIRMED"]

        short = client.post("/api/selection", json={
            "variant_id": variant_a.id, "date": "2026-03-01", "pax_count": 2, "demand_qty": 9,
        }, headers=_headers(org_a))
        assert short.status_code == 409
        assert short.get_json()["shortfall"] == 6

    def test_unknown_selection_is_404(self, client, db_session, org_a):
        response = client.post("/api/selection/nope/confirm", headers=_headers(org_a))
        assert response.status_code == 404


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_release_warnings_route(self, client, db_session, org_a, variant_a):
        response = client.get("/api/allocations/release-warnings", headers=_headers(org_a))
        assert response.status_code == 200
        assert response.get_json()["count"] == 0
        assert allocation_service.list_release_warnings(org_id=org_a.id) == []
