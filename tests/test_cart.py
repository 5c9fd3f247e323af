import json
import os

import pytest

from cart import CartLine, CartError, CartStore, add_item, build_checkout_payload, cart_reducer, count, subtotal

RICE = {"id": "66b11aaaaaaaaaaaaaaaaaaa", "name": "Chinigura Rice", "image": "rice.jpg"}
KG = {"label": "1 kg", "unit": "kg", "price": 140, "stock": 3}
FIVE_KG = {"label": "5 kg", "unit": "kg", "price": 650, "stock": 2}


def test_add_merges_and_caps_at_stock():
    items = add_item([], RICE, KG, 2)
    items = add_item(items, RICE, KG, 5)
    assert len(items) == 1
    assert items[0].qty == 3

    items = add_item(items, RICE, FIVE_KG)
    assert [(i.variantLabel, i.qty) for i in items] == [("1 kg", 3), ("5 kg", 1)]
    assert count(items) == 4
    assert subtotal(items) == 3 * 140 + 650


def test_add_rejects_missing_variant_or_no_stock():
    with pytest.raises(CartError):
        add_item([], RICE, None)
    with pytest.raises(CartError):
        add_item([], RICE, {**KG, "stock": 0})


def test_add_uses_mongo_id_and_bad_qty():
    items = add_item([], {"_id": "abc", "name": "Ghee"}, KG, "lots")
    assert items[0].id == "abc"
    assert items[0].qty == 1


def test_set_qty_is_clamped():
    items = add_item([], RICE, KG, 1)
    items = cart_reducer(items, {"type": "SET_QTY", "id": RICE["id"], "variantLabel": "1 kg", "qty": 99})
    assert items[0].qty == 3
    items = cart_reducer(items, {"type": "SET_QTY", "id": RICE["id"], "variantLabel": "1 kg", "qty": -4})
    assert items[0].qty == 1


def test_remove_clear_and_unknown_action():
    items = add_item(add_item([], RICE, KG), RICE, FIVE_KG)
    items = cart_reducer(items, {"type": "REMOVE_ITEM", "id": RICE["id"], "variantLabel": "1 kg"})
    assert [i.variantLabel for i in items] == ["5 kg"]
    assert cart_reducer(items, {"type": "NOPE"}) is items
    assert cart_reducer(items, {"type": "CLEAR"}) == []


def test_checkout_payload_summarises_products():
    items = add_item(add_item([], RICE, KG, 2), RICE, FIVE_KG, 1)
    payload = build_checkout_payload(items, {"name": "Rahim", "email": "rahim@gmail.com"})
    assert payload["payment"] == {"method": "COD"}
    assert payload["items"][0] == {
        "productId": RICE["id"],
        "name": "Chinigura Rice",
        "label": "1 kg",
        "imageUrl": "rice.jpg",
        "price": 140,
        "qty": 2,
    }
    assert payload["productsSummary"] == [
        {"productId": RICE["id"], "name": "Chinigura Rice", "imageUrl": "rice.jpg", "totalQty": 3}
    ]


def test_store_persists_and_hydrates(tmp_path):
    path = str(tmp_path / "cart.json")
    store = CartStore(path)
    assert store.items == []
    store.add(RICE, KG, 2)

    with open(path, encoding="utf-8") as fh:
        saved = json.load(fh)
    assert saved[0]["qty"] == 2

    again = CartStore(path)
    assert again.items == store.items

    store.set_qty(RICE["id"], "1 kg", "x")
    assert store.items[0].qty == 1
    store.remove(RICE["id"], "1 kg")
    assert CartStore(path).items == []


def test_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "cart.json"
    path.write_text("{not json", encoding="utf-8")
    assert CartStore(str(path)).items == []
    path.write_text(json.dumps([{"qty": 1}]), encoding="utf-8")
    assert CartStore(str(path)).items == []
    path.write_text(json.dumps({"items": []}), encoding="utf-8")
    assert CartStore(str(path)).items == []


def test_sync_picks_up_other_writer(tmp_path):
    path = str(tmp_path / "cart.json")
    tab_a = CartStore(path)
    tab_b = CartStore(path)
    tab_a.add(RICE, KG, 1)
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000))

    assert tab_b.sync() is True
    assert [i.variantLabel for i in tab_b.items] == ["1 kg"]
    assert tab_b.sync() is False


def test_clear_empty_cart_does_not_write(tmp_path):
    path = tmp_path / "cart.json"
    store = CartStore(str(path))
    store.clear()
    assert not path.exists()
    store.add(RICE, KG)
    assert store.clear() == []
    assert json.loads(path.read_text(encoding="utf-8")) == []


def test_lines_are_models():
    line = CartLine(id="x", name="Salt", price=40, stock=5, qty=2)
    assert line.model_dump()["variantLabel"] is None
