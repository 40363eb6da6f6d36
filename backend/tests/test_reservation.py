from __future__ import annotations

import threading

from sqlmodel import Session, SQLModel, create_engine, select

from shop.core.config import settings
from shop.models import Card, Product
from shop.services import reservation

NOW = 1_700_000_000_000


def _card(db, card_id: int) -> Card:
    db.expire_all()
    card = db.get(Card, card_id)
    assert card is not None
    return card


def test_reserve_binds_one_free_card(db, make_product):
    make_product("p1", cards=2)
    assert reservation.reserve(db, "p1", "ORDA", NOW) is True
    db.commit()

    card = reservation.get_reserved(db, "ORDA")
    assert card is not None
    assert card.reserved_at == NOW
    bound = db.exec(select(Card).where(Card.reserved_order_id == "ORDA")).all()
    assert len(bound) == 1


def test_reserve_fails_when_everything_is_taken(db, make_product):
    make_product("p1", cards=1)
    assert reservation.reserve(db, "p1", "ORDA", NOW)
    db.commit()
    assert reservation.reserve(db, "p1", "ORDB", NOW + 1) is False
    db.rollback()
    assert reservation.reserve(db, "unknown", "ORDC", NOW) is False


def test_expired_reservation_can_be_taken_over(db, make_product):
    make_product("p1", cards=1)
    assert reservation.reserve(db, "p1", "ORDA", NOW)
    db.commit()

    later = NOW + settings.reservation_window_ms + 1
    assert reservation.reserve(db, "p1", "ORDB", later)
    db.commit()
    assert reservation.get_reserved(db, "ORDA") is None
    card = reservation.get_reserved(db, "ORDB")
    assert card is not None and card.reserved_at == later


def test_release_only_touches_unused_cards(db, make_product):
    make_product("p1", cards=2)
    assert reservation.reserve(db, "p1", "ORDA", NOW)
    db.commit()
    assert reservation.release(db, "ORDA") == 1
    db.commit()
    assert reservation.get_reserved(db, "ORDA") is None
    assert reservation.release(db, "ORDA") == 0


def test_consume_requires_binding_to_the_same_order(db, make_product):
    make_product("p1", cards=1)
    card = reservation.claim_any(db, "p1", "ORDA", NOW)
    assert card is not None
    db.commit()

    assert reservation.consume(db, card, "ORDB", NOW) is False
    assert reservation.consume(db, card, "ORDA", NOW) is True
    db.commit()
    assert reservation.consume(db, card, "ORDA", NOW) is False

    used = _card(db, card.id)
    assert used.is_used is True
    assert used.used_at == NOW
    # 已使用的卡密不再带预占信息
    assert used.reserved_order_id is None
    assert used.reserved_at is None


def test_claim_any_returns_none_without_stock(db, make_product):
    make_product("p1")
    assert reservation.claim_any(db, "p1", "ORDA", NOW) is None


def test_concurrent_reserve_never_double_books(tmp_path):
    """多个线程同时抢 3 张卡密：恰好 3 个成功，且每张卡密只绑定一个订单"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(Product(id="hot", name="Hot item"))
        session.add_all([Card(product_id="hot", card_key=f"k{i}") for i in range(3)])
        session.commit()

    racers = 8
    barrier = threading.Barrier(racers)
    results: dict[str, bool] = {}
    errors: list[BaseException] = []
    lock = threading.Lock()

    def _race(order_id: str) -> None:
        try:
            barrier.wait()
            with Session(engine) as session:
                ok = reservation.reserve(session, "hot", order_id, NOW)
                session.commit()
            with lock:
                results[order_id] = ok
        except BaseException as exc:  # noqa: BLE001
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=_race, args=(f"ORD{i}",)) for i in range(racers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    winners = {oid for oid, ok in results.items() if ok}
    assert len(winners) == 3

    with Session(engine) as session:
        cards = session.exec(select(Card).where(Card.product_id == "hot")).all()
        bound = [c.reserved_order_id for c in cards]
    assert sorted(bound) == sorted(winners)
    engine.dispose()
