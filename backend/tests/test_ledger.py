from __future__ import annotations

import pytest
from sqlmodel import Session, select

from shop.api.errors import AppError
from shop.core.config import settings
from shop.enums import OrderStatus
from shop.models import Card, Order, Product
from shop.services import ledger, reservation

NOW = 1_700_000_000_000


def _window() -> int:
    return settings.reservation_window_ms


def _cards(db, product_id: str) -> list[Card]:
    return list(db.exec(select(Card).where(Card.product_id == product_id).order_by(Card.id)).all())


def test_snapshot_counts_free_locked_and_used(db, make_product):
    product = make_product("p1", cards=4)
    c1, c2, c3, _ = _cards(db, "p1")
    c1.reserved_order_id, c1.reserved_at = "ORDA", NOW - 1000  # 窗口内
    c2.reserved_order_id, c2.reserved_at = "ORDB", NOW - _window() - 1  # 已过期，视为可售
    c3.is_used, c3.used_at = True, NOW
    db.add_all([c1, c2, c3])
    db.commit()

    snap = ledger.stock_snapshot(db, product, NOW)
    assert snap.available == 2
    assert snap.locked == 1
    assert snap.unused == 3
    assert snap.stock == 2
    assert ledger.count_available(db, "p1", NOW) == 2
    assert ledger.count_locked(db, "p1", NOW) == 1
    assert ledger.count_unused(db, "p1") == 3


def test_reservation_at_exact_window_boundary_is_still_locked(db, make_product):
    product = make_product("p1", cards=1)
    (card,) = _cards(db, "p1")
    card.reserved_order_id, card.reserved_at = "ORDA", NOW - _window()
    db.add(card)
    db.commit()

    snap = ledger.stock_snapshot(db, product, NOW)
    assert snap.available == 0
    assert snap.locked == 1


def test_shared_product_reports_unlimited_stock(db, make_product):
    product = make_product("shared", cards=1, is_shared=True)
    assert ledger.stock_snapshot(db, product, NOW).stock == ledger.UNLIMITED_STOCK

    (card,) = _cards(db, "shared")
    card.is_used = True
    db.add(card)
    db.commit()
    assert ledger.stock_snapshot(db, product, NOW).stock == 0


def test_empty_product_has_zero_stock(db, make_product):
    product = make_product("p1")
    snap = ledger.stock_snapshot(db, product, NOW)
    assert (snap.stock, snap.available, snap.locked, snap.unused) == (0, 0, 0, 0)


def test_count_sold_sums_paid_and_delivered(db, make_product):
    make_product("p1")
    for i, status in enumerate(
        [OrderStatus.paid, OrderStatus.delivered, OrderStatus.pending, OrderStatus.refunded]
    ):
        db.add(Order(order_id=f"O{i}", product_id="p1", product_name="x", status=status))
    db.commit()
    assert ledger.count_sold(db, "p1") == 2


def test_parse_and_add_cards(db, make_product):
    make_product("p1")
    assert ledger.parse_card_keys("  a \n\n b\r\n  \n") == ["a", "b"]
    assert ledger.add_cards(db, "p1", "k1\nk2\n\nk3\n") == 3
    assert ledger.add_cards(db, "p1", "\n  \n") == 0
    assert [c.card_key for c in ledger.list_cards(db, "p1")] == ["k1", "k2", "k3"]
    # 重复的行按多张卡密导入
    assert ledger.add_cards(db, "p1", "k1\nk1") == 2
    assert len(ledger.list_cards(db, "p1")) == 5


def test_add_cards_unknown_product(db):
    with pytest.raises(AppError) as exc:
        ledger.add_cards(db, "missing", "k1")
    assert exc.value.code == 404101


def test_list_cards_hides_used_by_default(db, make_product):
    make_product("p1", cards=2)
    first = _cards(db, "p1")[0]
    first.is_used = True
    db.add(first)
    db.commit()
    assert len(ledger.list_cards(db, "p1")) == 1
    assert len(ledger.list_cards(db, "p1", include_used=True)) == 2


def test_delete_card_rules(db, make_product):
    make_product("p1", cards=3)
    free, reserved, used = _cards(db, "p1")
    reserved.reserved_order_id, reserved.reserved_at = "ORDA", NOW - 10
    used.is_used = True
    db.add_all([reserved, used])
    db.commit()
    free_id, reserved_id, used_id = free.id, reserved.id, used.id

    with pytest.raises(AppError) as exc:
        ledger.delete_card(db, used_id, NOW)
    assert exc.value.code == 409101

    with pytest.raises(AppError) as exc:
        ledger.delete_card(db, reserved_id, NOW)
    assert exc.value.code == 409102

    # 预占过期后可以删除
    assert ledger.delete_card(db, reserved_id, NOW + _window()) == "p1"
    assert ledger.delete_card(db, free_id, NOW) == "p1"

    with pytest.raises(AppError) as exc:
        ledger.delete_card(db, free_id, NOW)
    assert exc.value.code == 404102


def test_delete_card_rechecks_reservation_in_the_delete(db, make_product):
    """读取卡密之后才被别的请求预占：条件删除不命中，返回预占中"""
    make_product("p1", cards=1)
    card = _cards(db, "p1")[0]
    assert card.reserved_at is None

    with Session(db.get_bind()) as other:
        assert reservation.reserve(other, "p1", "ORDX", NOW)
        other.commit()

    with pytest.raises(AppError) as exc:
        ledger.delete_card(db, card.id, NOW)
    assert exc.value.code == 409102
    db.expire_all()
    assert _cards(db, "p1")[0].reserved_order_id == "ORDX"


def test_delete_product_removes_cards_but_keeps_orders(db, make_product):
    make_product("p1", cards=2)
    used = _cards(db, "p1")[0]
    used.is_used = True
    db.add(used)
    db.add(Order(order_id="OLD", product_id="p1", product_name="Product p1", status=OrderStatus.delivered))
    db.commit()

    assert ledger.delete_product(db, "p1", NOW) == 2
    db.expire_all()
    assert db.get(Product, "p1") is None
    assert _cards(db, "p1") == []
    assert db.get(Order, "OLD").product_name == "Product p1"

    with pytest.raises(AppError) as exc:
        ledger.delete_product(db, "p1", NOW)
    assert exc.value.code == 404101


def test_delete_product_with_live_reservation_conflicts(db, make_product):
    make_product("p1", cards=2)
    assert reservation.reserve(db, "p1", "ORDA", NOW)
    db.commit()

    with pytest.raises(AppError) as exc:
        ledger.delete_product(db, "p1", NOW + 1)
    assert exc.value.code == 409103
    # 整体回滚：空闲卡密也还在
    assert len(_cards(db, "p1")) == 2

    # 预占过期后可以删除
    assert ledger.delete_product(db, "p1", NOW + _window() + 1) == 2
