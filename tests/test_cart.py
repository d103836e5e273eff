def add(client, headers, product_id, quantity, **extra):
    return client.post("/api/cart", headers=headers, json={"productId": product_id, "quantity": quantity, **extra})


def test_cart_requires_token(client):
    assert client.get("/api/cart").status_code == 401
    assert client.post("/api/cart", json={"productId": "p1", "quantity": 1}).status_code == 401


def test_get_missing_cart(client, user):
    _, headers = user
    assert client.get("/api/cart", headers=headers).status_code == 404


def test_add_creates_cart(client, user):
    account, headers = user
    response = add(client, headers, "p1", 2)
    assert response.status_code == 200
    cart = response.json()["cart"]
    assert cart["userId"] == account["id"]
    assert cart["items"] == [{"productId": "p1", "quantity": 2}]


def test_add_existing_product_increments(client, user):
    _, headers = user
    add(client, headers, "p1", 2)
    add(client, headers, "p2", 1)
    cart = add(client, headers, "p1", 3).json()["cart"]
    assert cart["items"] == [{"productId": "p1", "quantity": 5}, {"productId": "p2", "quantity": 1}]


def test_get_cart_attaches_known_products(client, admin, user):
    _, admin_headers = admin
    product = client.post("/api/product", headers=admin_headers,
                          json={"name": "Mug", "price": 5, "stock": 1}).json()["product"]
    _, headers = user
    add(client, headers, product["id"], 1)
    add(client, headers, "p-unknown", 1)

    items = client.get("/api/cart", headers=headers).json()["items"]
    assert items[0]["product"]["name"] == "Mug"
    assert "product" not in items[1]


def test_remove_item(client, user):
    _, headers = user
    add(client, headers, "p1", 1)
    add(client, headers, "p2", 1)
    response = client.request("DELETE", "/api/cart", headers=headers, json={"productId": "p1"})
    assert response.status_code == 200
    assert response.json()["cart"]["items"] == [{"productId": "p2", "quantity": 1}]


def test_remove_absent_product_is_noop(client, user):
    _, headers = user
    add(client, headers, "p1", 4)
    before = client.get("/api/cart", headers=headers).json()
    response = client.request("DELETE", "/api/cart", headers=headers, json={"productId": "p9"})
    assert response.status_code == 200
    assert client.get("/api/cart", headers=headers).json() == before


def test_remove_without_cart(client, user):
    _, headers = user
    response = client.request("DELETE", "/api/cart", headers=headers, json={"productId": "p1"})
    assert response.status_code == 404


def test_update_quantity(client, user):
    _, headers = user
    add(client, headers, "p1", 1)
    response = client.put("/api/cart", headers=headers, json={"productId": "p1", "quantity": 6})
    assert response.status_code == 200
    assert response.json()["cart"]["items"] == [{"productId": "p1", "quantity": 6}]


def test_update_quantity_missing_item(client, user):
    _, headers = user
    assert client.put("/api/cart", headers=headers, json={"productId": "p1", "quantity": 1}).status_code == 404
    add(client, headers, "p1", 1)
    response = client.put("/api/cart", headers=headers, json={"productId": "p2", "quantity": 1})
    assert response.status_code == 404
    assert response.json()["error"] == "Item not found in cart"


def test_quantity_must_be_positive(client, user):
    _, headers = user
    assert add(client, headers, "p1", 0).status_code == 400


def test_user_cannot_touch_other_cart(client, user, other_user):
    _, headers = user
    other, _ = other_user
    assert add(client, headers, "p1", 1, userId=other["id"]).status_code == 403
    assert client.get("/api/cart", headers=headers, params={"userId": other["id"]}).status_code == 403


def test_admin_manages_other_cart(client, user, admin):
    account, user_headers = user
    _, headers = admin
    assert add(client, headers, "p1", 2, userId=account["id"]).status_code == 200
    assert client.get("/api/cart", headers=user_headers).json()["items"] == [{"productId": "p1", "quantity": 2}]
