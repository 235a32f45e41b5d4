from conftest import ADDRESS, auth_headers


async def cod_order(client, customer, items):
    response = await client.post(
        "/api/v1/orders",
        json={"address": ADDRESS, "payment_method": "cash_on_delivery", "items": items},
        headers=auth_headers(customer),
    )
    assert response.status_code == 201
    return response.json()["order"]


async def set_status(client, seller, order_id, status):
    response = await client.put(
        f"/api/v1/orders/{order_id}/status",
        json={"status": status},
        headers=auth_headers(seller),
    )
    assert response.status_code == 200


async def test_dashboard_counts_only_own_items(client, customer, seller, make_user, make_product):
    lamp = await make_product(seller, stock=10, price="100.00", name="Lamp")
    other_seller = await make_user(seller.role)
    rug = await make_product(other_seller, stock=10, price="500.00", name="Rug")

    mixed = await cod_order(
        client,
        customer,
        [{"product_id": lamp.id, "quantity": 2}, {"product_id": rug.id, "quantity": 1}],
    )
    cancelled = await cod_order(client, customer, [{"product_id": lamp.id, "quantity": 1}])
    await set_status(client, seller, cancelled["id"], "Cancelled")
    # Awaiting online payment: not revenue yet
    await client.post(
        "/api/v1/orders",
        json={"address": ADDRESS, "items": [{"product_id": lamp.id, "quantity": 1}]},
        headers=auth_headers(customer),
    )

    response = await client.get("/api/v1/sellers/dashboard", headers=auth_headers(seller))

    dashboard = response.json()["dashboard"]
    assert dashboard["total_products"] == 1
    assert dashboard["total_orders"] == 3
    assert dashboard["total_revenue"] == "200.00"
    assert dashboard["order_stats"] == {
        "Order Confirmed": 1,
        "Cancelled": 1,
        "Pending Payment": 1,
    }
    assert mixed["amount"] == 730.0


async def test_seller_products(client, seller, make_user, make_product):
    await make_product(seller, name="Lamp")
    await make_product(seller, name="Vase")
    other = await make_user(seller.role)
    await make_product(other, name="Rug")

    response = await client.get(
        "/api/v1/sellers/products", params={"limit": 1}, headers=auth_headers(seller)
    )

    body = response.json()
    assert len(body["products"]) == 1
    assert body["pagination"]["total_products"] == 2
    assert body["pagination"]["total_pages"] == 2


async def test_seller_orders_filtered(client, customer, seller, make_user, make_product):
    lamp = await make_product(seller, stock=10, name="Lamp")
    other_seller = await make_user(seller.role)
    rug = await make_product(other_seller, stock=10, name="Rug")
    shipped = await cod_order(
        client,
        customer,
        [{"product_id": lamp.id, "quantity": 1}, {"product_id": rug.id, "quantity": 1}],
    )
    await cod_order(client, customer, [{"product_id": lamp.id, "quantity": 1}])
    await cod_order(client, customer, [{"product_id": rug.id, "quantity": 1}])
    await set_status(client, seller, shipped["id"], "Shipped")

    everything = await client.get("/api/v1/sellers/orders", headers=auth_headers(seller))
    only_shipped = await client.get(
        "/api/v1/sellers/orders",
        params={"status": "Shipped"},
        headers=auth_headers(seller),
    )

    orders = everything.json()["orders"]
    assert everything.json()["pagination"]["total_orders"] == 2
    assert all(item["seller_id"] == seller.id for o in orders for item in o["items"])
    assert orders[0]["customer"]["email"] == customer.email
    assert [o["id"] for o in only_shipped.json()["orders"]] == [shipped["id"]]


async def test_seller_routes_require_seller(client, customer):
    response = await client.get("/api/v1/sellers/dashboard", headers=auth_headers(customer))

    assert response.status_code == 403
