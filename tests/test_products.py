from conftest import product_payload


def test_create_product_computes_total_stock(client, admin_headers, db):
    payload = product_payload(skus=("NB-001-R-100", "NB-001-G-200"), stock=7)
    payload["product_code"] = " nb-001 "
    resp = client.post("/admin/products", json=payload, headers=admin_headers)
    assert resp.status_code == 201

    product = resp.json()["product"]
    assert product["total_stock"] == 14
    assert product["product_code"] == "NB-001"
    assert product["tags"] == ["school", "ruled"]
    assert product["in_stock"] is True
    assert db["product"].count_documents({}) == 1


def test_create_product_legacy_route(client, admin_headers):
    resp = client.post("/products", json=product_payload(), headers=admin_headers)
    assert resp.status_code == 201


def test_create_product_requires_admin(client, user_headers, db):
    resp = client.post("/admin/products", json=product_payload(), headers=user_headers)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Forbidden - admin only"
    assert db["product"].count_documents({}) == 0


def test_create_product_requires_session(client):
    assert client.post("/admin/products", json=product_payload()).status_code == 401


def test_duplicate_skus_in_request_are_rejected(client, admin_headers, db):
    payload = product_payload(skus=("SAME", "SAME"))
    resp = client.post("/admin/products", json=payload, headers=admin_headers)
    assert resp.status_code == 400
    assert any("Duplicate SKUs" in d for d in resp.json()["details"])
    assert db["product"].count_documents({}) == 0


def test_sku_owned_by_another_product_conflicts(client, admin_headers, make_product):
    make_product(skus=("NB-001-R-100",))
    payload = product_payload(code="NB-002", skus=("NB-002-X", "NB-001-R-100"))
    resp = client.post("/admin/products", json=payload, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["colliding"] == ["NB-001-R-100"]


def test_product_code_conflicts(client, admin_headers, make_product):
    make_product(code="NB-001")
    resp = client.post("/admin/products", json=product_payload(code="NB-001", skus=("OTHER",)), headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["error"] == "Product code already exists"


def test_invalid_product_is_rejected(client, admin_headers):
    payload = product_payload(variants=[])
    resp = client.post("/admin/products", json=payload, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation error"


def test_add_variant_updates_total_stock(client, admin_headers, product):
    variant = {"page_type": "grid", "quantity": 200, "color": "red", "stock": 5, "sku": "NB-001-G-200"}
    resp = client.post(f"/admin/products/{product['_id']}/variants", json=variant, headers=admin_headers)
    assert resp.status_code == 201
    body = resp.json()["product"]
    assert body["total_stock"] == 15
    assert len(body["variants"]) == 2


def test_add_variant_with_taken_sku_conflicts(client, admin_headers, make_product):
    first = make_product(skus=("A-1",))
    make_product(code="NB-002", skus=("B-1",))
    variant = {"page_type": "plain", "quantity": 100, "color": "black", "stock": 1, "sku": "B-1"}
    resp = client.post(f"/admin/products/{first['_id']}/variants", json=variant, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["colliding"] == ["B-1"]


def test_update_variant_stock(client, admin_headers, make_product, db):
    product = make_product(skus=("A-1", "A-2"), stock=10)
    resp = client.patch(f"/admin/products/{product['_id']}/variants/A-2", json={"stock": 0}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["product"]["total_stock"] == 10
    assert db["product"].find_one({"_id": product["_id"]})["total_stock"] == 10

    resp = client.patch(f"/admin/products/{product['_id']}/variants/NOPE", json={"stock": 1}, headers=admin_headers)
    assert resp.status_code == 404


def test_replacing_variants_recomputes_stock(client, admin_headers, product):
    variants = [
        {"page_type": "dotted", "quantity": 80, "color": "green", "stock": 3, "sku": "NB-001-D-80"},
        {"page_type": "plain", "quantity": 80, "color": "green", "stock": 4, "sku": "NB-001-P-80"},
    ]
    resp = client.put(f"/admin/products/{product['_id']}", json={"variants": variants, "price": 320},
                      headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()["product"]
    assert body["total_stock"] == 7
    assert body["price"] == 320
    assert body["price_range"] == {"min": 320, "max": 320}


def test_update_with_duplicate_skus_is_rejected(client, admin_headers, product):
    variants = [
        {"page_type": "plain", "quantity": 80, "color": "green", "stock": 4, "sku": "DUP"},
        {"page_type": "plain", "quantity": 90, "color": "green", "stock": 4, "sku": "DUP"},
    ]
    resp = client.put(f"/admin/products/{product['_id']}", json={"variants": variants}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Duplicate SKUs in request"


def test_update_may_keep_its_own_skus(client, admin_headers, product):
    variants = [{"page_type": "ruled", "quantity": 100, "color": "blue", "stock": 2, "sku": "NB-001-R-100"}]
    resp = client.put(f"/admin/products/{product['_id']}", json={"variants": variants}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["product"]["total_stock"] == 2


def test_delete_product(client, admin_headers, product):
    assert client.delete(f"/admin/products/{product['_id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/admin/products/{product['_id']}", headers=admin_headers).status_code == 404


def test_public_listing_hides_inactive(client, make_product):
    make_product(code="NB-001", skus=("A-1",))
    make_product(code="NB-002", skus=("B-1",), is_active=False)
    make_product(code="NB-003", skus=("C-1",), main_category="A5", name="Pocket Diary")

    products = client.get("/products").json()["products"]
    assert {p["product_code"] for p in products} == {"NB-001", "NB-003"}

    products = client.get("/products", params={"category": "A5"}).json()["products"]
    assert [p["product_code"] for p in products] == ["NB-003"]

    products = client.get("/products", params={"q": "pocket"}).json()["products"]
    assert [p["product_code"] for p in products] == ["NB-003"]


def test_get_product(client, product):
    resp = client.get(f"/products/{product['_id']}")
    assert resp.status_code == 200
    assert resp.json()["product"]["id"] == str(product["_id"])

    assert client.get("/products/not-an-id").status_code == 400
    assert client.get("/products/64b7f0c2a1b2c3d4e5f60718").status_code == 404


def test_variant_price_range(client, make_product, db):
    product = make_product(skus=("A-1", "A-2"))
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"variants.1.additional_price": 40}})
    body = client.get(f"/products/{product['_id']}").json()["product"]
    assert body["price_range"] == {"min": 300, "max": 340}
