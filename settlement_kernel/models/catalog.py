"""
Reference rows the settlement core points at: products, clients, investors.

Their CRUD belongs to the surrounding back office.  The core reads only
the fields it needs: names for projections and the client credit limit.
"""

from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase


class Product(TrackedBase):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)

    def __repr__(self) -> str:
        return f"<Product {self.name}>"


class Client(TrackedBase):
    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # 0 means no limit is enforced
    credit_limit_usd: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class Investor(TrackedBase):
    __tablename__ = "investors"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<Investor {self.name}>"
