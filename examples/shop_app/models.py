"""
Data models for the emberorm shop example.
"""

from __future__ import annotations

from emberorm.core import (
    DateTimeField,
    FloatField,
    ForeignKey,
    IntegerField,
    JSONField,
    ManyToManyField,
    Model,
    OneToMany,
    StringField,
    VersionField,
)


class Shipping(Model):
    days = IntegerField(nullable=False)
    carrier = StringField(default="post", max_length=40)


class Category(Model):
    name = StringField(nullable=False, unique=True, max_length=80)
    products = ManyToManyField("Product", mapped_by="categories")


class Product(Model):
    name = StringField(nullable=False, max_length=120)
    price = FloatField(nullable=False)
    stock = IntegerField(default=0)
    attributes = JSONField(default=dict)
    shipping = ForeignKey(Shipping, nullable=True, cascade=("persist", "merge"))
    categories = ManyToManyField(Category, cascade="persist")
    version = VersionField()

    class Meta:
        table = "shop_product"


class Customer(Model):
    name = StringField(nullable=False, max_length=120)
    email = StringField(nullable=False, unique=True, max_length=255)


class Order(Model):
    customer = ForeignKey(Customer)
    placed_at = DateTimeField(auto_now_add=True)
    lines = OneToMany("OrderLine", mapped_by="order", cascade="all")

    class Meta:
        table = "shop_order"


class OrderLine(Model):
    order = ForeignKey(Order)
    product = ForeignKey(Product)
    quantity = IntegerField(nullable=False)
