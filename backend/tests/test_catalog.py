from decimal import Decimal

from bazaar.models.shop import Category, Product
from conftest import auth_headers


async def create_category(session_factory, name: str = "Lighting") -> Category:
    async with session_factory() as session:
        category = Category(name=name, slug=name.lower())
        session.add(category)
        await session.commit()
        return category


async def test_admin_creates_category(client, admin, customer):
    denied = await client.post(
        "/api/v1/products/categories",
        json={"name": "Home Decor"},
        headers=auth_headers(customer),
    )
    created = await client.post(
        "/api/v1/products/categories",
        json={"name": "Home Decor"},
        headers=auth_headers(admin),
    )
    duplicate = await client.post(
        "/api/v1/products/categories",
        json={"name": "Home Decor"},
        headers=auth_headers(admin),
    )
    listing = await client.get("/api/v1/products/categories")

    assert denied.status_code == 403
    assert created.status_code == 201
    assert created.json()["category"]["slug"] == "home-decor"
    assert duplicate.status_code == 400
    assert [c["name"] for c in listing.json()["categories"]] == ["Home Decor"]


async def test_seller_creates_product(client, seller, session_factory):
    category = await create_category(session_factory)

    response = await client.post(
        "/api/v1/products",
        json={
            "name": "Brass Lamp",
            "description": "Hand-made",
            "price": "499.00",
            "category_id": category.id,
            "stock_quantity": 7,
        },
        headers=auth_headers(seller),
    )

    assert response.status_code == 201
    product = response.json()["product"]
    assert product["seller_id"] == seller.id
    assert product["stock"] == 7
    assert product["category"]["name"] == "Lighting"
    assert product["slug"].startswith("brass-lamp-")


async def test_customer_cannot_create_product(client, customer, session_factory):
    category = await create_category(session_factory)

    response = await client.post(
        "/api/v1/products",
        json={"name": "X", "description": "", "price": "1", "category_id": category.id},
        headers=auth_headers(customer),
    )

    assert response.status_code == 403


async def test_create_product_unknown_category(client, seller):
    response = await client.post(
        "/api/v1/products",
        json={"name": "X", "description": "", "price": "1", "category_id": 999},
        headers=auth_headers(seller),
    )

    assert response.status_code == 400


async def test_list_products_filters_and_pagination(client, seller, make_product, session_factory):
    category = await create_category(session_factory)
    for index, price in enumerate(["50.00", "150.00", "250.00", "350.00"]):
        await make_product(seller, price=price, name=f"Lamp {index}", category=category)
    await make_product(seller, price="999.00", name="Rug")

    response = await client.get(
        "/api/v1/products",
        params={
            "category": category.id,
            "min_price": 100,
            "sort_by": "price",
            "sort_order": "asc",
            "limit": 2,
        },
    )

    body = response.json()
    assert [p["price"] for p in body["products"]] == [150.0, 250.0]
    assert body["pagination"] == {
        "current_page": 1,
        "total_pages": 2,
        "total_products": 3,
        "has_next": True,
        "has_prev": False,
    }


async def test_list_products_search(client, seller, make_product):
    await make_product(seller, name="Copper Kettle")
    await make_product(seller, name="Wool Rug")

    response = await client.get("/api/v1/products", params={"search": "kettle"})

    assert [p["name"] for p in response.json()["products"]] == ["Copper Kettle"]


async def test_list_products_rejects_unknown_sort(client):
    response = await client.get("/api/v1/products", params={"sort_by": "stock_quantity"})

    assert response.status_code == 400


async def test_get_product_not_found(client):
    response = await client.get("/api/v1/products/12345")

    assert response.status_code == 404


async def test_only_owner_updates_product(client, seller, make_user, make_product, fetch):
    product = await make_product(seller)
    other = await make_user(seller.role)

    denied = await client.put(
        f"/api/v1/products/{product.id}",
        json={"price": "1.00"},
        headers=auth_headers(other),
    )
    updated = await client.put(
        f"/api/v1/products/{product.id}",
        json={"price": "120.00", "stock_quantity": 3},
        headers=auth_headers(seller),
    )

    assert denied.status_code == 403
    assert updated.status_code == 200
    stored = await fetch(Product, product.id)
    assert stored.price == Decimal("120.00")
    assert stored.stock_quantity == 3


async def test_stock_cannot_drop_below_reserved(client, seller, make_product, session_factory):
    product = await make_product(seller, stock=5)
    async with session_factory() as session:
        stored = await session.get(Product, product.id)
        stored.reserved_quantity = 4
        await session.commit()

    response = await client.put(
        f"/api/v1/products/{product.id}",
        json={"stock_quantity": 2},
        headers=auth_headers(seller),
    )

    assert response.status_code == 400


async def test_delete_product(client, seller, make_product, fetch):
    product = await make_product(seller)

    response = await client.delete(f"/api/v1/products/{product.id}", headers=auth_headers(seller))

    assert response.status_code == 200
    assert await fetch(Product, product.id) is None


async def test_upload_images(client, seller, make_product, storage, fetch):
    product = await make_product(seller)

    response = await client.post(
        f"/api/v1/products/{product.id}/images",
        files=[
            ("images", ("front.png", b"\x89PNG fake", "image/png")),
            ("images", ("side.jpg", b"\xff\xd8 fake", "image/jpeg")),
        ],
        headers=auth_headers(seller),
    )

    assert response.status_code == 200
    urls = response.json()["images"]
    assert len(urls) == 2
    assert all(url.startswith("/uploads/products/") for url in urls)
    assert urls[0].endswith(".png") and urls[1].endswith(".jpg")
    assert len(list(storage.products_dir.iterdir())) == 2
    assert (await fetch(Product, product.id)).image_urls == urls


async def test_upload_rejects_non_images(client, seller, make_product, storage):
    product = await make_product(seller)

    response = await client.post(
        f"/api/v1/products/{product.id}/images",
        files=[("images", ("notes.txt", b"hello", "text/plain"))],
        headers=auth_headers(seller),
    )

    assert response.status_code == 400
    assert not storage.products_dir.exists()


async def test_upload_rejects_more_than_five(client, seller, make_product):
    product = await make_product(seller)
    files = [("images", (f"{i}.png", b"x", "image/png")) for i in range(6)]

    response = await client.post(
        f"/api/v1/products/{product.id}/images",
        files=files,
        headers=auth_headers(seller),
    )

    assert response.status_code == 400
