import io

from bson import ObjectId

import settings
from conftest import make_product

NEW_PRODUCT = {
    "name": "Rattan Lounge Chair",
    "description": "Hand-woven rattan lounge chair with cushion.",
    "price": 8999,
    "discount": 10,
    "category": "chair",
    "quantity": 7,
    "specifications": {"material": "Rattan", "color": "Natural"},
}


def test_list_filters_active_and_derives_fields(client, mongo):
    make_product(mongo, name="Teak Bench", price=5000.0, discount=20, category="other")
    make_product(mongo, name="Hidden Bench", is_active=False)
    res = client.get("/api/products")
    assert res.status_code == 200
    data = res.json()
    assert data["total"] == 1
    assert data["total_pages"] == 1
    assert data["current_page"] == 1
    [product] = data["products"]
    assert product["name"] == "Teak Bench"
    assert product["discounted_price"] == 4000.0
    assert product["in_stock"] is True
    assert "reviews" not in product
    assert "_id" not in product and product["id"]


def test_list_search_price_and_sort(client, mongo):
    make_product(mongo, name="Oak Desk", category="desk", price=15000.0)
    make_product(mongo, name="Pine Desk", category="desk", price=7000.0)
    make_product(mongo, name="Velvet Sofa", category="sofa", price=30000.0)

    res = client.get("/api/products", params={"search": "desk", "sort_by": "price", "sort_order": "asc"})
    assert [p["name"] for p in res.json()["products"]] == ["Pine Desk", "Oak Desk"]

    res = client.get("/api/products", params={"min_price": 10000, "max_price": 20000})
    assert [p["name"] for p in res.json()["products"]] == ["Oak Desk"]

    res = client.get("/api/products", params={"category": "sofa"})
    assert res.json()["total"] == 1
    assert client.get("/api/products", params={"category": "lamp"}).status_code == 400


def test_search_treats_input_literally(client, mongo):
    make_product(mongo, name="Desk (Oak)")
    res = client.get("/api/products", params={"search": "(Oak"})
    assert res.status_code == 200
    assert res.json()["total"] == 1


def test_pagination(client, mongo):
    for i in range(5):
        make_product(mongo, name=f"Stool {i}")
    res = client.get("/api/products", params={"page": 2, "limit": 2})
    data = res.json()
    assert data["total_pages"] == 3
    assert data["current_page"] == 2
    assert len(data["products"]) == 2
    assert client.get("/api/products", params={"limit": 101}).status_code == 422


def test_categories_and_category_listing(client, mongo):
    make_product(mongo, category="bed")
    make_product(mongo, category="sofa")
    make_product(mongo, category="desk", is_active=False)
    assert client.get("/api/products/categories/list").json() == ["bed", "sofa"]
    assert client.get("/api/products/category/bed").json()["total"] == 1
    assert client.get("/api/products/category/lamp").status_code == 422


def test_get_product(client, product_id):
    res = client.get(f"/api/products/{product_id}")
    assert res.status_code == 200
    assert res.json()["discounted_price"] == 9000.0
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404
    assert client.get("/api/products/not-an-id").status_code == 400


def test_create_requires_admin(client, user_headers, admin_headers):
    assert client.post("/api/products", json=NEW_PRODUCT).status_code == 401
    assert client.post("/api/products", json=NEW_PRODUCT, headers=user_headers).status_code == 403
    res = client.post("/api/products", json=NEW_PRODUCT, headers=admin_headers)
    assert res.status_code == 201
    product = res.json()["product"]
    assert product["ratings"] == {"average": 0, "count": 0}
    assert product["discounted_price"] == 8099.1


def test_create_validates(client, admin_headers):
    bad = {**NEW_PRODUCT, "discount": 120}
    assert client.post("/api/products", json=bad, headers=admin_headers).status_code == 422
    bad = {**NEW_PRODUCT, "category": "lamp"}
    assert client.post("/api/products", json=bad, headers=admin_headers).status_code == 422


def test_update_is_partial(client, admin_headers, product_id):
    res = client.put(f"/api/products/{product_id}", json={"price": 12000}, headers=admin_headers)
    assert res.status_code == 200
    product = res.json()["product"]
    assert product["price"] == 12000
    assert product["name"] == "Walnut Coffee Table"
    missing = client.put(f"/api/products/{ObjectId()}", json={"price": 1}, headers=admin_headers)
    assert missing.status_code == 404


def test_delete(client, mongo, admin_headers, product_id):
    assert client.delete(f"/api/products/{product_id}", headers=admin_headers).status_code == 200
    assert mongo["product"].count_documents({}) == 0
    assert client.delete(f"/api/products/{product_id}", headers=admin_headers).status_code == 404


def test_admin_listing_includes_inactive(client, mongo, admin_headers):
    make_product(mongo)
    make_product(mongo, is_active=False)
    assert client.get("/api/products/admin/all", headers=admin_headers).json()["total"] == 2


def test_reviews_update_ratings_once_per_user(client, mongo, user_headers, admin_headers, product_id):
    res = client.post(f"/api/products/{product_id}/reviews", json={"rating": 4, "comment": "Sturdy"}, headers=user_headers)
    assert res.status_code == 201
    assert res.json()["ratings"] == {"average": 4.0, "count": 1}
    again = client.post(f"/api/products/{product_id}/reviews", json={"rating": 5}, headers=user_headers)
    assert again.status_code == 400
    res = client.post(f"/api/products/{product_id}/reviews", json={"rating": 5}, headers=admin_headers)
    assert res.json()["ratings"] == {"average": 4.5, "count": 2}
    assert len(mongo["product"].find_one({"_id": ObjectId(product_id)})["reviews"]) == 2


def test_upload_image(client, admin_headers, tmp_path):
    files = {"image": ("chair.png", io.BytesIO(b"\x89PNG fake"), "image/png")}
    res = client.post("/api/products/upload-image", files=files, headers=admin_headers)
    assert res.status_code == 200
    url = res.json()["image_url"]
    assert url.startswith("/uploads/") and url.endswith(".png")
    assert (tmp_path / url.rsplit("/", 1)[1]).exists()


def test_upload_rejects_non_images(client, admin_headers):
    files = {"image": ("notes.txt", io.BytesIO(b"hello"), "text/plain")}
    res = client.post("/api/products/upload-image", files=files, headers=admin_headers)
    assert res.status_code == 400


def test_update_keeps_other_specifications(client, mongo, admin_headers):
    pid = make_product(mongo, specifications={"material": "Walnut", "dimensions": "120 x 60 cm"})
    res = client.put(f"/api/products/{pid}", json={"specifications": {"color": "Red"}}, headers=admin_headers)
    assert res.status_code == 200
    stored = mongo["product"].find_one({"_id": ObjectId(pid)})["specifications"]
    assert stored == {"material": "Walnut", "dimensions": "120 x 60 cm", "color": "Red"}


def test_upload_over_size_limit(client, admin_headers, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
    files = {"image": ("chair.png", io.BytesIO(b"\x89PNG too big"), "image/png")}
    res = client.post("/api/products/upload-image", files=files, headers=admin_headers)
    assert res.status_code == 400
    assert list(tmp_path.iterdir()) == []
