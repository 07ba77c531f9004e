import json
from pathlib import Path

from models.cart import Cart
from models.category import SubCategory
from models.order import OrderItem
from models.product import Product

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _product_form(category, **overrides):
    form = {
        "title": "Olympic Bar",
        "sku": " bar-01 ",
        "description": "20 kg <b>barbell</b>",
        "price": "199.0",
        "stock": "7",
        "category_id": str(category.id),
        "subcategory_id": str(category.subcategories[0].id),
        "tags": "strength, barbell ,",
        "is_featured": "true",
    }
    form.update(overrides)
    return form


# ============================================================================
# Categories
# ============================================================================


def test_create_category_with_image_and_subcategories(client, admin, auth_headers, settings):
    r = client.post(
        "/categories",
        data={
            "name": "Yoga & Pilates",
            "description": "Mats and blocks",
            "subcategories": json.dumps([{"name": "Mats"}, {"name": "Blocks", "is_active": False}]),
        },
        files={"image": ("cover.png", PNG, "image/png")},
        headers=auth_headers(admin),
    )

    assert r.status_code == 201
    body = r.json()
    assert body["slug"] == "yoga-pilates"
    assert [s["slug"] for s in body["subcategories"]] == ["mats", "blocks"]
    assert body["subcategories"][1]["is_active"] is False
    assert body["image_url"].startswith("/uploads/")
    assert (Path(settings.UPLOAD_DIR) / body["image_url"][len("/uploads/"):]).exists()


def test_create_category_rejections(client, user, admin, auth_headers, category):
    headers = auth_headers(admin)
    assert client.post("/categories", data={"name": "X"}, headers=auth_headers(user)).status_code == 403

    r = client.post("/categories", data={"name": "Fitness Equipment"}, headers=headers)
    assert r.status_code == 409

    r = client.post("/categories", data={"name": "Bad", "subcategories": "{not json"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["errors"] == {"subcategories": "must be a JSON list"}

    r = client.post(
        "/categories",
        data={"name": "Dupes", "subcategories": json.dumps([{"name": "A"}, {"name": "a"}])},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post("/categories", data={"name": "Doc"}, files={"image": ("doc.pdf", b"%PDF", "application/pdf")},
                    headers=headers)
    assert r.status_code == 400


def test_category_lookup_by_id_or_slug(client, category, make_product):
    make_product(title="Shown")
    make_product(title="Hidden", status="inactive")

    by_slug = client.get("/categories/fitness-equipment").json()
    by_id = client.get(f"/categories/{category.id}").json()

    assert by_slug == by_id
    assert [p["title"] for p in by_slug["products"]] == ["Shown"]
    assert client.get("/categories/nope").status_code == 404

    subs = client.get(f"/categories/{category.id}/subcategories").json()
    assert [s["name"] for s in subs] == ["Dumbbells"]


def test_list_categories(client, db, category):
    listing = client.get("/categories").json()["categories"]
    assert [c["name"] for c in listing] == ["Fitness Equipment"]

    category.is_active = False
    db.commit()
    assert client.get("/categories?active_only=true").json()["categories"] == []


def test_update_category_replaces_subcategories(client, db, admin, auth_headers, category, make_product):
    product = make_product()
    old_sub = category.subcategories[0].id

    r = client.put(
        f"/categories/{category.id}",
        json={"name": "Gym Gear", "subcategories": [{"name": "Dumbbells"}, {"name": "Plates"}]},
        headers=auth_headers(admin),
    )

    assert r.status_code == 200
    body = r.json()
    assert body["slug"] == "gym-gear"
    assert [s["name"] for s in body["subcategories"]] == ["Dumbbells", "Plates"]
    db.expire_all()
    assert db.query(SubCategory).filter(SubCategory.id == old_sub).first() is None
    assert db.query(Product).filter(Product.id == product.id).one().subcategory_id is None


def test_delete_category(client, admin, auth_headers, category, make_product):
    headers = auth_headers(admin)
    product = make_product()

    assert client.delete(f"/categories/{category.id}", headers=headers).status_code == 409

    client.delete(f"/products/{product.id}", headers=headers)
    r = client.delete(f"/categories/{category.id}", headers=headers)
    assert r.status_code == 200
    assert client.get(f"/categories/{category.id}").status_code == 404


# ============================================================================
# Products
# ============================================================================


def test_create_product_multipart(client, admin, auth_headers, category):
    r = client.post(
        "/products",
        data=_product_form(category),
        files=[
            ("main_image", ("bar.png", PNG, "image/png")),
            ("sub_images", ("side.jpg", PNG, "image/jpeg")),
            ("sub_images", ("top.webp", PNG, "image/webp")),
        ],
        headers=auth_headers(admin),
    )

    assert r.status_code == 201
    body = r.json()
    assert body["sku"] == "BAR-01"
    assert body["slug"] == "olympic-bar"
    assert body["description"] == "20 kg barbell"
    assert body["tags"] == ["strength", "barbell"]
    assert body["is_featured"] is True
    assert body["main_image_url"].endswith(".png")
    assert [u.rsplit(".", 1)[1] for u in body["sub_image_urls"]] == ["jpg", "webp"]
    assert body["category"]["slug"] == "fitness-equipment"
    assert body["rating_count"] == 0


def test_create_product_rejections(client, admin, auth_headers, category, make_product):
    headers = auth_headers(admin)
    make_product()  # SKU-001

    r = client.post("/products", data=_product_form(category, sku="sku-001"), headers=headers)
    assert r.status_code == 409
    assert r.json()["errors"] == {"sku": "already exists"}

    r = client.post("/products", data=_product_form(category, price="-1"), headers=headers)
    assert r.status_code == 400
    assert "price" in r.json()["errors"]

    r = client.post("/products", data=_product_form(category, category_id="999"), headers=headers)
    assert r.status_code == 404

    r = client.post("/products", data=_product_form(category, subcategory_id="12345"), headers=headers)
    assert r.status_code == 400
    assert r.json()["errors"] == {"subcategory_id": "invalid"}

    too_many = [("sub_images", (f"{i}.png", PNG, "image/png")) for i in range(5)]
    r = client.post("/products", data=_product_form(category), files=too_many, headers=headers)
    assert r.status_code == 400


def test_update_product(client, admin, auth_headers, make_product):
    product = make_product(price=10.0)

    r = client.put(
        f"/products/{product.id}",
        data={"price": "12.5", "title": "Renamed Item", "tags": "a,b"},
        headers=auth_headers(admin),
    )

    assert r.status_code == 200
    body = r.json()
    assert body["price"] == 12.5
    assert body["slug"] == "renamed-item"
    assert body["tags"] == ["a", "b"]
    assert body["sku"] == product.sku


def test_list_and_filter_products(client, make_product):
    make_product(title="Cheap Band", price=5.0)
    make_product(title="Heavy Rack", price=500.0)
    make_product(title="Retired", price=50.0, status="archived")

    r = client.get("/products")
    assert r.json()["total"] == 2

    r = client.get("/products?min_price=10")
    assert [p["title"] for p in r.json()["items"]] == ["Heavy Rack"]

    r = client.get("/products?q=band")
    assert [p["title"] for p in r.json()["items"]] == ["Cheap Band"]

    r = client.get("/products?sort_by=price&order=asc&page_size=1&page=2")
    assert r.json()["items"][0]["title"] == "Heavy Rack"
    assert r.json()["page"] == 2


def test_get_product_by_slug_and_subcategory(client, category, make_product):
    product = make_product(title="Hex Dumbbell")

    assert client.get(f"/products/{product.slug}").json()["title"] == "Hex Dumbbell"
    assert client.get("/products/missing").status_code == 404

    listed = client.get(f"/products/subcategory/{category.subcategories[0].id}").json()
    assert [p["id"] for p in listed] == [product.id]
    assert client.get("/products/subcategory/999").status_code == 404


def test_delete_product_cleans_references(client, db, user, admin, auth_headers, make_product, shipping):
    keep = make_product(price=10.0)
    gone = make_product(price=20.0)
    headers = auth_headers(user)
    client.post("/cart", json={"product_id": keep.id, "quantity": 1}, headers=headers)
    client.post("/cart", json={"product_id": gone.id, "quantity": 1}, headers=headers)
    client.post("/wishlist", json={"product_id": gone.id}, headers=headers)
    client.post(f"/reviews/{gone.id}", json={"rating": 4}, headers=headers)
    client.post("/orders", json={"items": [{"product_id": gone.id, "quantity": 1}], "shipping_address": shipping},
                headers=headers)

    r = client.delete(f"/products/{gone.id}", headers=auth_headers(admin))

    assert r.status_code == 200
    cart = client.get("/cart", headers=headers).json()
    assert [i["product_id"] for i in cart["items"]] == [keep.id]
    assert cart["grand_total"] == 10
    assert client.get("/wishlist", headers=headers).json()["items"] == []
    db.expire_all()
    snapshot = db.query(OrderItem).one()
    assert snapshot.product_id is None
    assert snapshot.unit_price == 20.0
    assert db.query(Cart).one().grand_total == 10
