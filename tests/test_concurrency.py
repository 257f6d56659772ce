"""Concurrent order placement against shared stock."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from errors import InsufficientStock
from orders import OrderService
from schemas import Product, Requester


def _race(service, requests, shipping):
    """Run place_order calls released together by a barrier; return results/errors."""
    barrier = threading.Barrier(len(requests))

    def attempt(index, lines):
        barrier.wait()
        try:
            return service.place_order(
                Requester(id=f"user-{index}"),
                {
                    "products": [{"productId": pid, "quantity": qty} for pid, qty in lines],
                    "shippingAddress": shipping,
                },
            )
        except InsufficientStock as e:
            return e

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        futures = [pool.submit(attempt, i, lines) for i, lines in enumerate(requests)]
        return [f.result() for f in futures]


@pytest.fixture
def service(memory_database):
    return OrderService(memory_database)


def _product(database, stock, name="Limited Edition Sneaker", price=120.0):
    return database.products.create(
        Product(name=name, description="Limited run", price=price, category="Shoes", stock=stock)
    )


class TestStockRace:
    def test_two_buyers_one_wins(self, service, memory_database, shipping):
        # 2Q > S >= Q
        for _ in range(20):
            product = _product(memory_database, stock=5)
            results = _race(service, [[(product["id"], 3)], [(product["id"], 3)]], shipping)

            placed = [r for r in results if isinstance(r, dict)]
            failed = [r for r in results if isinstance(r, InsufficientStock)]
            assert len(placed) == 1
            assert len(failed) == 1
            assert memory_database.products.get(product["id"])["stock"] == 2

    def test_many_buyers_never_oversell(self, service, memory_database, shipping):
        product = _product(memory_database, stock=10)
        results = _race(service, [[(product["id"], 1)]] * 25, shipping)

        placed = [r for r in results if isinstance(r, dict)]
        assert len(placed) == 10
        assert memory_database.products.get(product["id"])["stock"] == 0
        assert memory_database.orders.count() == 10

    def test_multi_item_race_has_no_partial_state(self, service, memory_database, shipping):
        a = _product(memory_database, stock=3, name="A")
        b = _product(memory_database, stock=3, name="B")
        # Opposite line order in half of the requests
        requests = [
            [(a["id"], 2), (b["id"], 2)] if i % 2 == 0 else [(b["id"], 2), (a["id"], 2)]
            for i in range(8)
        ]
        results = _race(service, requests, shipping)

        placed = [r for r in results if isinstance(r, dict)]
        stock_a = memory_database.products.get(a["id"])["stock"]
        stock_b = memory_database.products.get(b["id"])["stock"]
        assert len(placed) <= 1
        assert stock_a == 3 - 2 * len(placed)
        assert stock_b == 3 - 2 * len(placed)
        assert memory_database.orders.count() == len(placed)
