# test_api_flow_e2e.py
from datetime import date, timedelta

from larder.util import clock


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type","").startswith("application/json") else r.text


def d(offset: int) -> str:
    return (clock.today() + timedelta(days=offset)).isoformat()


def test_stock_to_plan_to_dashboard_flow(client, base_url, auth_headers, kitchen_headers, director_headers, rng_suffix):
    r = client.get(f"{base_url}/healthz")
    assert jprint("GET /healthz", r) == {"ok": True}

    # ===== 1. Catalogue =====
    r = client.post(f"{base_url}/products", headers=auth_headers, json={
        "name": f"Rice-{rng_suffix}", "unit": "kg", "cost": 2.5, "alert_threshold": 9
    })
    rice_id = jprint("POST /products (rice)", r)["id"]

    r = client.post(f"{base_url}/products", headers=auth_headers, json={
        "name": f"Milk-{rng_suffix}", "unit": "l", "cost": 1.2
    })
    milk_id = jprint("POST /products (milk)", r)["id"]

    # ===== 2. Receiving stock =====
    r = client.post(f"{base_url}/lots", headers=kitchen_headers, json={
        "product_id": rice_id, "batch_number": "R-LATE", "quantity": 6, "expiry_date": d(12)
    })
    late_id = jprint("POST /lots (rice late)", r)["id"]

    r = client.post(f"{base_url}/lots", headers=kitchen_headers, json={
        "product_id": rice_id, "batch_number": "R-EARLY", "quantity": 4, "expiry_date": d(3)
    })
    early = jprint("POST /lots (rice early)", r)
    assert (early["quantity"], early["available"], early["archived"]) == (4.0, 4.0, False)

    r = client.post(f"{base_url}/lots", headers=auth_headers, json={
        "product_id": milk_id, "batch_number": "M-OLD", "quantity": 5, "expiry_date": d(-1)
    })
    old_milk_id = jprint("POST /lots (milk expired)", r)["id"]

    r = client.post(f"{base_url}/movements", headers=kitchen_headers, json={
        "lot_id": late_id, "type": "LOSS", "quantity": 0.5, "reason": "SPILLED"
    })
    assert jprint("POST /movements (loss)", r)["quantity"] == 0.5

    r = client.post(f"{base_url}/movements", headers=kitchen_headers, json={
        "lot_id": late_id, "type": "OUT", "quantity": 99
    })
    assert r.status_code == 409, r.text
    assert r.json()["code"] == "INSUFFICIENT_STOCK"

    r = client.post(f"{base_url}/movements", headers=kitchen_headers, json={
        "lot_id": late_id, "type": "OUT", "quantity": 0
    })
    assert r.status_code == 422, r.text
    assert r.json()["code"] == "VALIDATION_ERROR"

    # ===== 3. Recipe and plan =====
    r = client.post(f"{base_url}/recipes", headers=auth_headers, json={
        "name": f"Risotto-{rng_suffix}", "base_portions": 4, "waste_rate": 0.1,
        "items": [{"product_id": rice_id, "qty_per_portion": 0.5}]
    })
    recipe = jprint("POST /recipes", r)
    assert recipe["items_count"] == 1

    r = client.patch(f"{base_url}/recipes/{recipe['id']}", headers=auth_headers, json={
        "items": [{"product_id": rice_id, "qty_per_portion": 0.4}, {"product_id": milk_id, "qty_per_portion": 0.0}]
    })
    assert r.status_code == 422, r.text

    r = client.patch(f"{base_url}/recipes/{recipe['id']}", headers=auth_headers, json={
        "items": [{"product_id": rice_id, "qty_per_portion": 0.4}]
    })
    jprint("PATCH /recipes", r)
    r = client.get(f"{base_url}/recipes/{recipe['id']}/items", headers=director_headers)
    items = jprint("GET /recipes/:id/items", r)
    assert [(i["product_id"], i["qty_per_portion"]) for i in items] == [(rice_id, 0.4)]

    r = client.post(f"{base_url}/meal-plans", headers=kitchen_headers, json={
        "name": f"Week-{rng_suffix}", "period_start": d(0), "period_end": d(6),
        "items": [{"recipe_id": recipe["id"], "portions": 15, "service_date": d(1)}]
    })
    plan = jprint("POST /meal-plans", r)
    assert plan["status"] == "DRAFT"
    item_id = plan["items"][0]["id"]

    # 0.4 * 15 * 1.1 = 6.6 -> 4 from the early lot, 2.6 from the late one
    r = client.post(f"{base_url}/meal-plans/{plan['id']}/confirm", headers=kitchen_headers)
    plan = jprint("POST /meal-plans/:id/confirm", r)
    assert plan["status"] == "CONFIRMED"
    assert plan["items"][0]["reserved"] == 6.6

    r = client.get(f"{base_url}/lots", headers=auth_headers, params={"product_id": rice_id})
    lots = {l["batch_number"]: l for l in jprint("GET /lots", r)}
    assert (lots["R-EARLY"]["reserved"], lots["R-EARLY"]["available"]) == (4.0, 0.0)
    assert lots["R-LATE"]["reserved"] == 2.6
    assert lots["R-LATE"]["available"] == 2.9

    r = client.get(f"{base_url}/stock", headers=director_headers)
    stock = {s["product_id"]: s for s in jprint("GET /stock", r)}
    assert stock[rice_id]["available"] == 2.9

    r = client.delete(f"{base_url}/recipes/{recipe['id']}", headers=auth_headers)
    assert r.status_code == 409, r.text
    assert r.json() == {"detail": "Cannot delete: recipe in use.", "code": "CONFLICT"}

    r = client.post(f"{base_url}/meal-plans/{plan['id']}/execute", headers=kitchen_headers, json={
        "produced": {item_id: 14}
    })
    plan = jprint("POST /meal-plans/:id/execute", r)
    assert plan["status"] == "EXECUTED"
    assert plan["items"][0]["produced_portions"] == 14
    assert plan["items"][0]["reserved"] == 0.0

    r = client.post(f"{base_url}/meal-plans/{plan['id']}/execute", headers=kitchen_headers)
    assert r.status_code == 409, r.text

    r = client.get(f"{base_url}/movements", headers=auth_headers, params={"type": "OUT"})
    outs = jprint("GET /movements?type=OUT", r)
    assert sorted(m["quantity"] for m in outs) == [2.6, 4.0]
    assert {m["reason"] for m in outs} == {"PRODUCTION"}
    assert {m["ref_meal_plan_item_id"] for m in outs} == {item_id}

    # ===== 4. Expiry sweep =====
    r = client.post(f"{base_url}/lots/expire", headers=auth_headers)
    assert jprint("POST /lots/expire", r) == {"lotsProcessed": 1, "totalLoss": 5.0, "lotsSkipped": 0}
    r = client.post(f"{base_url}/lots/expire", headers=auth_headers)
    assert jprint("POST /lots/expire (again)", r)["lotsProcessed"] == 0

    r = client.get(f"{base_url}/lots", headers=auth_headers, params={"product_id": milk_id, "include_archived": True})
    [old_milk] = jprint("GET /lots (archived)", r)
    assert (old_milk["id"], old_milk["quantity"], old_milk["archived"]) == (old_milk_id, 0.0, True)

    # ===== 5. Dashboard =====
    r = client.get(f"{base_url}/dashboard/overview", headers=director_headers)
    ov = jprint("GET /dashboard/overview", r)
    totals = ov["kpis"]["totals_30d"]
    assert (totals["IN"], totals["OUT"], totals["LOSS"], totals["EXPIRED"]) == (15.0, 6.6, 0.5, 5.0)
    # (0.5 + 5) / (6.6 + 0.5 + 5)
    assert ov["kpis"]["loss_rate_30d"] == 0.455
    assert ov["kpis"]["expired_share_of_loss_30d"] == 0.909
    assert ov["kpis"]["plans"] == {"DRAFT": 0, "CONFIRMED": 0, "EXECUTED": 1}
    assert ov["days"] == 30
    assert [p["name"] for p in ov["topProducts"]] == [f"Rice-{rng_suffix}"]
    assert [row["batch_number"] for row in ov["expiredRows"]] == ["M-OLD"]
    assert [s["id"] for s in ov["lowStock"]] == [rice_id]
    assert set(ov) == {"kpis", "series", "topProducts", "expiringLots", "expiredRows", "lowStock", "days"}

    r = client.get(f"{base_url}/dashboard/overview", headers=director_headers, params={"days": 0})
    assert r.status_code == 422

    # executed plans stay
    r = client.delete(f"{base_url}/meal-plans/{plan['id']}", headers=auth_headers)
    assert r.status_code == 409, r.text


def test_cancel_plan_releases_reservations(client, base_url, auth_headers, kitchen_headers):
    r = client.post(f"{base_url}/products", headers=auth_headers, json={"name": "Oats", "unit": "kg"})
    oats_id = jprint("POST /products", r)["id"]
    r = client.post(f"{base_url}/lots", headers=auth_headers, json={
        "product_id": oats_id, "batch_number": "O-1", "quantity": 3, "expiry_date": d(5)
    })
    jprint("POST /lots", r)
    r = client.post(f"{base_url}/recipes", headers=auth_headers, json={
        "name": "Porridge", "items": [{"product_id": oats_id, "qty_per_portion": 0.1}]
    })
    recipe_id = jprint("POST /recipes", r)["id"]

    def new_plan(portions):
        r = client.post(f"{base_url}/meal-plans", headers=kitchen_headers, json={
            "name": "Breakfasts", "period_start": d(0), "period_end": d(2),
            "items": [{"recipe_id": recipe_id, "portions": portions}]
        })
        return jprint("POST /meal-plans", r)["id"]

    big = new_plan(40)
    r = client.post(f"{base_url}/meal-plans/{big}/confirm", headers=kitchen_headers)
    assert r.status_code == 409, r.text
    assert r.json()["code"] == "INSUFFICIENT_AVAILABLE_STOCK"
    r = client.get(f"{base_url}/meal-plans/{big}", headers=kitchen_headers)
    assert jprint("GET /meal-plans/:id", r)["status"] == "DRAFT"

    small = new_plan(20)
    jprint("POST /meal-plans/:id/confirm", client.post(f"{base_url}/meal-plans/{small}/confirm", headers=kitchen_headers))
    r = client.get(f"{base_url}/meal-plans", headers=kitchen_headers, params={"status": "confirmed"})
    assert [p["id"] for p in jprint("GET /meal-plans?status", r)] == [small]

    r = client.delete(f"{base_url}/meal-plans/{small}", headers=kitchen_headers)
    assert r.status_code == 204, r.text
    r = client.get(f"{base_url}/meal-plans/{small}", headers=kitchen_headers)
    assert r.status_code == 404
    r = client.get(f"{base_url}/stock", headers=kitchen_headers)
    [oats] = jprint("GET /stock", r)
    assert (oats["reserved"], oats["available"]) == (0.0, 3.0)

    r = client.delete(f"{base_url}/meal-plans/{big}", headers=kitchen_headers)
    assert r.status_code == 204
    r = client.delete(f"{base_url}/recipes/{recipe_id}", headers=auth_headers)
    assert r.status_code == 204, r.text


def test_roles_are_enforced(client, base_url, auth_headers, kitchen_headers, director_headers):
    r = client.get(f"{base_url}/stock")
    assert r.status_code == 401
    r = client.get(f"{base_url}/stock", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401

    r = client.post(f"{base_url}/products", headers=director_headers, json={"name": "Tea", "unit": "kg"})
    assert r.status_code == 403
    r = client.post(f"{base_url}/products", headers=kitchen_headers, json={"name": "Tea", "unit": "kg"})
    assert r.status_code == 403
    r = client.post(f"{base_url}/lots/expire", headers=kitchen_headers)
    assert r.status_code == 403
    r = client.get(f"{base_url}/dashboard/overview", headers=kitchen_headers)
    assert r.status_code == 200
    assert r.headers.get("X-Request-ID")

    r = client.post(f"{base_url}/products", headers=auth_headers, json={"name": "Tea", "unit": "kg"})
    tea_id = jprint("POST /products", r)["id"]
    r = client.post(f"{base_url}/lots", headers=director_headers, json={
        "product_id": tea_id, "batch_number": "T-1", "quantity": 1, "expiry_date": date.today().isoformat()
    })
    assert r.status_code == 403


def test_product_in_use_cannot_be_deleted(client, base_url, auth_headers):
    r = client.post(f"{base_url}/products", headers=auth_headers, json={"name": "Flour", "unit": "kg"})
    flour_id = jprint("POST /products", r)["id"]
    r = client.post(f"{base_url}/products", headers=auth_headers, json={"name": "Yeast", "unit": "g"})
    yeast_id = jprint("POST /products", r)["id"]
    r = client.post(f"{base_url}/lots", headers=auth_headers, json={
        "product_id": flour_id, "batch_number": "F-1", "quantity": 2, "expiry_date": d(30)
    })
    jprint("POST /lots", r)

    r = client.delete(f"{base_url}/products/{flour_id}", headers=auth_headers)
    assert r.status_code == 409, r.text
    r = client.delete(f"{base_url}/products/{yeast_id}", headers=auth_headers)
    assert r.status_code == 204, r.text

    r = client.patch(f"{base_url}/products/{flour_id}", headers=auth_headers, json={"active": False})
    assert jprint("PATCH /products", r)["active"] is False
    r = client.get(f"{base_url}/products", headers=auth_headers)
    assert jprint("GET /products", r) == []
    r = client.get(f"{base_url}/products", headers=auth_headers, params={"include_inactive": True})
    assert [p["id"] for p in jprint("GET /products?include_inactive", r)] == [flour_id]
