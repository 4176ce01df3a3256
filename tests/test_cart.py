from conftest import ADDRESS


def add(client, headers, product, quantity=1, variant_sku=None):
    body = {"product_id": str(product["_id"]), "quantity": quantity}
    if variant_sku is not None:
        body["variant_sku"] = variant_sku
    return client.post("/cart", json=body, headers=headers)


def test_empty_cart_is_not_an_error(client, user_headers):
    resp = client.get("/cart", headers=user_headers)
    assert resp.status_code == 200
    assert resp.json() == {"items": [], "subtotal": 0, "shipping_cost": 0, "tax_amount": 0, "total_amount": 0}


def test_adding_same_product_twice_merges_lines(client, user_headers, product, db, user):
    assert add(client, user_headers, product, 2).status_code == 200
    resp = add(client, user_headers, product, 3)
    assert resp.status_code == 200

    items = resp.json()["cart"]["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 5
    assert len(db["cart"].find_one({"user_id": user["_id"]})["items"]) == 1


def test_variant_is_part_of_the_line_key(client, user_headers, make_product):
    product = make_product(skus=("NB-001-R-100", "NB-001-G-200"))
    add(client, user_headers, product, 1)
    add(client, user_headers, product, 1, "NB-001-R-100")
    resp = add(client, user_headers, product, 4, "NB-001-R-100")

    items = {it["variant_sku"]: it["quantity"] for it in resp.json()["cart"]["items"]}
    assert items == {None: 1, "NB-001-R-100": 5}


def test_price_is_refreshed_on_increment(client, user_headers, product, db):
    add(client, user_headers, product, 1)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"price": 350}})
    resp = add(client, user_headers, product, 1)

    item = resp.json()["cart"]["items"][0]
    assert item["price_at_add"] == 350
    assert item["subtotal"] == 700


def test_variant_surcharge_is_captured(client, user_headers, make_product, db):
    product = make_product(skus=("NB-001-R-100",))
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"variants.0.additional_price": 25}})
    resp = add(client, user_headers, product, 1, "NB-001-R-100")
    assert resp.json()["cart"]["items"][0]["price_at_add"] == 325


def test_unknown_variant_is_rejected(client, user_headers, product):
    assert add(client, user_headers, product, 1, "NOPE").status_code == 404


def test_cart_totals_are_stored(client, user_headers, product, db, user):
    add(client, user_headers, product, 1)
    cart = db["cart"].find_one({"user_id": user["_id"]})
    assert cart["shipping_cost"] == 49
    assert cart["total_amount"] == 349
    assert cart["expires_at"] is not None

    add(client, user_headers, product, 1)
    cart = db["cart"].find_one({"user_id": user["_id"]})
    assert cart["shipping_cost"] == 0
    assert cart["total_amount"] == 600


def test_read_cart_joins_live_product(client, user_headers, product):
    add(client, user_headers, product, 2)
    body = client.get("/cart", headers=user_headers).json()
    item = body["items"][0]
    assert item["name"] == product["name"]
    assert item["images"] == product["images"]
    assert item["price"] == 300
    assert item["subtotal"] == 600
    assert body["subtotal"] == 600
    assert body["shipping_cost"] == 0
    assert body["total_amount"] == 600


def test_add_requires_session(client, product):
    resp = client.post("/cart", json={"product_id": str(product["_id"]), "quantity": 1})
    assert resp.status_code == 401
    assert resp.json()["error"]


def test_add_rejects_unknown_product(client, user_headers):
    resp = client.post("/cart", json={"product_id": "64b7f0c2a1b2c3d4e5f60718", "quantity": 1}, headers=user_headers)
    assert resp.status_code == 404


def test_add_rejects_inactive_product(client, user_headers, make_product):
    product = make_product(is_active=False)
    assert add(client, user_headers, product, 1).status_code == 404


def test_add_rejects_bad_quantity(client, user_headers, product):
    assert add(client, user_headers, product, 0).status_code == 400
    resp = client.post("/cart", json={"product_id": str(product["_id"])}, headers=user_headers)
    assert resp.status_code == 200
    resp = client.post("/cart", json={"product_id": str(product["_id"]), "quantity": "many"}, headers=user_headers)
    assert resp.status_code == 400


def test_remove_only_touches_matching_pair(client, user_headers, make_product):
    first = make_product(skus=("A-1", "A-2"))
    second = make_product(code="NB-002", skus=("B-1",))
    add(client, user_headers, first, 1)
    add(client, user_headers, first, 1, "A-1")
    add(client, user_headers, second, 1)

    resp = client.delete(f"/cart/{first['_id']}", params={"variant_sku": "A-1"}, headers=user_headers)
    assert resp.status_code == 200
    keys = {(it["product_id"], it["variant_sku"]) for it in resp.json()["cart"]["items"]}
    assert keys == {(str(first["_id"]), None), (str(second["_id"]), None)}

    resp = client.delete(f"/cart/{first['_id']}", headers=user_headers)
    keys = {(it["product_id"], it["variant_sku"]) for it in resp.json()["cart"]["items"]}
    assert keys == {(str(second["_id"]), None)}


def test_remove_without_cart_is_404(client, user_headers, product):
    assert client.delete(f"/cart/{product['_id']}", headers=user_headers).status_code == 404


def test_update_quantity(client, user_headers, product):
    add(client, user_headers, product, 1)
    resp = client.patch("/cart", json={"product_id": str(product["_id"]), "quantity": 4}, headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["cart"]["items"][0]["quantity"] == 4

    resp = client.patch("/cart", json={"product_id": str(product["_id"]), "quantity": 1, "variant_sku": "X"},
                        headers=user_headers)
    assert resp.status_code == 404


def test_cart_total_matches_order_total(client, user_headers, make_product, db, user):
    cheap = make_product(price=120.5)
    other = make_product(code="NB-002", price=99.99, skus=("B-1",))
    add(client, user_headers, cheap, 2)
    add(client, user_headers, other, 1)
    db["cart"].update_one({"user_id": user["_id"]}, {"$set": {"tax_amount": 12.5}})

    cart = client.get("/cart", headers=user_headers).json()
    resp = client.post("/order", json={"shipping_address": ADDRESS, "payment_method": "upi"}, headers=user_headers)
    order = resp.json()["data"]
    assert order["subtotal"] == cart["subtotal"]
    assert order["shipping_cost"] == cart["shipping_cost"]
    assert order["grand_total"] == cart["total_amount"]
