"""
Utility helpers for running the emberorm shop example end-to-end.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from emberorm.adapters import SQLiteAdapter
from emberorm.persistence import Session
from emberorm.schema import SchemaBuilder

from .models import Category, Customer, Order, OrderLine, Product, Shipping

MODELS = (Shipping, Category, Product, Customer, Order, OrderLine)


def bootstrap_session(dsn: str = "sqlite:///:memory:") -> Session:
    """
    Create a SQLite-backed session and ensure the shop schema exists.
    """

    adapter = SQLiteAdapter()
    session = Session(adapter, dsn=dsn)
    SchemaBuilder(session.dialect).create_all(session, MODELS)
    return session


def seed_catalog(session: Session) -> Dict[str, List[Dict[str, Any]]]:
    """
    Persist a small catalog. Shipping options and categories are saved
    through the product cascades rather than persisted one by one.
    """

    express = Shipping(days=1, carrier="courier")
    standard = Shipping(days=4)
    tools = Category(name="Tools")
    garden = Category(name="Garden")

    products = [
        Product(name="Hammer", price=12.5, stock=40, shipping=standard, categories=[tools]),
        Product(
            name="Hose",
            price=24.0,
            stock=15,
            attributes={"length_m": 20},
            shipping=express,
            categories=[garden],
        ),
        Product(name="Shears", price=18.0, stock=8, shipping=standard, categories=[tools, garden]),
    ]

    with session.transaction():
        for product in products:
            session.persist(product)

    return {
        "products": [product.to_dict() for product in products],
        "categories": [category.to_dict() for category in (tools, garden)],
    }


def place_order(session: Session, email: str, items: Sequence[Tuple[int, int]]) -> Order:
    """
    Create an order for ``email`` and decrement stock of each ``(product_id, quantity)``.

    The customer is created on first use. Lines are written through the
    order's ``all`` cascade; stock changes are picked up by change tracking.
    """

    customers = session.get_repository(Customer)
    with session.transaction():
        customer = customers.find_one_by(email=email)
        if customer is None:
            customer = Customer(name=email.split("@")[0].title(), email=email)
            session.persist(customer)
        order = Order(customer=customer)
        for product_id, quantity in items:
            product = session.find(Product, product_id)
            if product.stock < quantity:
                raise ValueError(f"Only {product.stock} of {product.name} left.")
            product.stock -= quantity
            order.lines.append(OrderLine(order=order, product=product, quantity=quantity))
        session.persist(order)
    return order


def order_summary(session: Session, order_id: int) -> Dict[str, Any]:
    """
    Describe an order by walking its lazy associations.
    """

    order = session.find(Order, order_id)
    lines = [
        {
            "product": line.product.name,
            "quantity": line.quantity,
            "subtotal": round(line.product.price * line.quantity, 2),
        }
        for line in order.lines
    ]
    return {
        "order": order.id,
        "customer": order.customer.email,
        "lines": lines,
        "total": round(sum(line["subtotal"] for line in lines), 2),
    }


def run_demo(dsn: str = "sqlite:///:memory:") -> Dict[str, Any]:
    """
    Bootstrap the database, seed the catalog, place an order and summarize it.
    """

    session = bootstrap_session(dsn=dsn)
    try:
        seed_catalog(session)
        hammer = session.get_repository(Product).find_one_by(name="Hammer")
        hose = session.get_repository(Product).find_one_by(name="Hose")
        order = place_order(session, "dana@example.com", [(hammer.id, 2), (hose.id, 1)])
        session.clear()
        return order_summary(session, order.id)
    finally:
        session.close()


if __name__ == "__main__":
    summary = run_demo("sqlite:///shop_demo.db")
    print(f"Order #{summary['order']} for {summary['customer']}")
    for entry in summary["lines"]:
        print(f"  {entry['quantity']} x {entry['product']}: {entry['subtotal']:.2f}")
    print(f"  total: {summary['total']:.2f}")
