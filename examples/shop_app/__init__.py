"""
Shop sample application showcasing the emberorm unit of work.
"""

from .demo import bootstrap_session, order_summary, place_order, run_demo, seed_catalog
from .models import Category, Customer, Order, OrderLine, Product, Shipping

__all__ = [
    "Category",
    "Customer",
    "Order",
    "OrderLine",
    "Product",
    "Shipping",
    "bootstrap_session",
    "seed_catalog",
    "place_order",
    "order_summary",
    "run_demo",
]
