from common.models import RoleEnum

ADMIN_PAYLOAD = {
    "name": "Admin",
    "username": "admin",
    "email": "admin@example.com",
    "password": "Passw0rd!",
    "role": RoleEnum.ADMIN.value,
}

OWNER_PAYLOAD = {
    "name": "Owner",
    "username": "owner",
    "email": "owner@example.com",
    "password": "Passw0rd!",
}

OTHER_PAYLOAD = {
    "name": "Other",
    "username": "other",
    "email": "other@example.com",
    "password": "Passw0rd!",
}

TENT_PAYLOAD = {
    "name": "Camping Tent",
    "description": "Four person tent",
    "location": "Pune",
    "quantity": 2,
}


def auth_header(users_client, username: str, password: str) -> dict[str, str]:
    response = users_client.post(
        "/api/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def create_tent(users_client, products_client) -> tuple[int, dict[str, str]]:
    users_client.post("/api/users/register", json=OWNER_PAYLOAD)
    headers = auth_header(users_client, "owner", "Passw0rd!")
    response = products_client.post("/api/products", json=TENT_PAYLOAD, headers=headers)
    assert response.status_code == 201
    return response.json()["id"], headers


def test_product_crud_and_filters(users_client, products_client):
    product_id, headers = create_tent(users_client, products_client)

    listed = products_client.get("/api/products", params={"location": "pun", "search": "tent"})
    assert [item["id"] for item in listed.json()] == [product_id]
    assert products_client.get("/api/products", params={"location": "Delhi"}).json() == []

    updated = products_client.put(f"/api/products/{product_id}", json={"isActive": False}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["is_active"] is False
    assert products_client.get("/api/products").json() == []


def test_only_owner_can_update(users_client, products_client):
    product_id, _ = create_tent(users_client, products_client)
    users_client.post("/api/users/register", json=OTHER_PAYLOAD)
    other_headers = auth_header(users_client, "other", "Passw0rd!")

    response = products_client.put(f"/api/products/{product_id}", json={"name": "Mine"}, headers=other_headers)

    assert response.status_code == 403


def test_unknown_product(products_client):
    response = products_client.get("/api/products/404")

    assert response.status_code == 404
    assert response.json() == {"detail": "Product not found"}


def test_categories_are_admin_managed(users_client, products_client):
    users_client.post("/api/users/register", json=ADMIN_PAYLOAD)
    admin_headers = auth_header(users_client, "admin", "Passw0rd!")
    users_client.post("/api/users/register", json=OWNER_PAYLOAD)
    owner_headers = auth_header(users_client, "owner", "Passw0rd!")

    denied = products_client.post("/api/categories", json={"name": "Outdoor"}, headers=owner_headers)
    created = products_client.post("/api/categories", json={"name": "Outdoor"}, headers=admin_headers)

    assert denied.status_code == 403
    assert created.status_code == 201
    assert [c["name"] for c in products_client.get("/api/categories").json()] == ["Outdoor"]


def test_new_pricing_row_replaces_active_one(users_client, products_client):
    product_id, headers = create_tent(users_client, products_client)

    products_client.post(
        f"/api/products/{product_id}/pricing",
        json={"durationType": "daily", "basePrice": "40.00"},
        headers=headers,
    )
    assert products_client.get(f"/api/products/{product_id}/pricing").json()[0]["base_price"] == "40.00"

    products_client.post(
        f"/api/products/{product_id}/pricing",
        json={"durationType": "daily", "basePrice": "50.00", "discountPercentage": "10"},
        headers=headers,
    )
    rows = products_client.get(f"/api/products/{product_id}/pricing").json()

    assert len(rows) == 1
    assert rows[0]["base_price"] == "50.00"


def test_quote(users_client, products_client):
    product_id, headers = create_tent(users_client, products_client)
    products_client.post(
        f"/api/products/{product_id}/pricing",
        json={"durationType": "daily", "basePrice": "50.00", "discountPercentage": "10"},
        headers=headers,
    )

    response = products_client.post(
        f"/api/products/{product_id}/quote",
        json={"startDate": "2024-06-01", "endDate": "2024-06-04", "durationType": "daily"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "duration": 3,
        "base_price": "150.00",
        "discount": "15.00",
        "service_fee": "8.50",
        "total": "143.50",
    }


def test_quote_without_pricing_row(users_client, products_client):
    product_id, _ = create_tent(users_client, products_client)

    response = products_client.post(
        f"/api/products/{product_id}/quote",
        json={"startDate": "2024-06-01", "endDate": "2024-06-04", "durationType": "monthly"},
    )

    assert response.status_code == 400


def test_check_availability(users_client, products_client):
    product_id, headers = create_tent(users_client, products_client)
    payload = {"startDate": "2024-06-01", "endDate": "2024-06-05"}

    assert products_client.post(f"/api/products/{product_id}/check-availability", json=payload).json() == {
        "available": True
    }

    reversed_range = {"startDate": "2024-06-05", "endDate": "2024-06-01"}
    assert products_client.post(f"/api/products/{product_id}/check-availability", json=reversed_range).status_code == 400

    products_client.put(f"/api/products/{product_id}", json={"quantity": 0}, headers=headers)
    assert products_client.post(f"/api/products/{product_id}/check-availability", json=payload).json() == {
        "available": False
    }


def test_check_availability_respects_listing_window(users_client, products_client):
    product_id, headers = create_tent(users_client, products_client)
    products_client.put(
        f"/api/products/{product_id}",
        json={"availableFrom": "2024-07-01", "availableUntil": "2024-08-01"},
        headers=headers,
    )
    url = f"/api/products/{product_id}/check-availability"

    june = products_client.post(url, json={"startDate": "2024-06-01", "endDate": "2024-06-04"})
    straddling = products_client.post(url, json={"startDate": "2024-07-30", "endDate": "2024-08-03"})
    july = products_client.post(url, json={"startDate": "2024-07-02", "endDate": "2024-07-05"})

    assert june.json() == {"available": False}
    assert straddling.json() == {"available": False}
    assert july.json() == {"available": True}


def test_inverted_listing_window_is_rejected(users_client, products_client):
    product_id, headers = create_tent(users_client, products_client)
    inverted = {"availableFrom": "2024-08-01", "availableUntil": "2024-07-01"}

    created = products_client.post("/api/products", json={**TENT_PAYLOAD, **inverted}, headers=headers)
    updated = products_client.put(f"/api/products/{product_id}", json=inverted, headers=headers)
    products_client.put(f"/api/products/{product_id}", json={"availableFrom": "2024-07-01"}, headers=headers)
    merged = products_client.put(f"/api/products/{product_id}", json={"availableUntil": "2024-06-15"}, headers=headers)

    assert created.status_code == 422
    assert updated.status_code == 422
    assert merged.status_code == 400
    assert products_client.get(f"/api/products/{product_id}").json()["available_until"] is None


def test_duration_options(products_client):
    options = products_client.get("/api/config/durations").json()

    assert {option["duration_type"]: option["unit_hours"] for option in options} == {
        "hourly": 1,
        "daily": 24,
        "weekly": 168,
        "monthly": 720,
    }
