"""SQLAlchemy ORM models for the ledger tables touched by statement imports"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Account(Base):
    """Bank or credit-card account; billing config only for credit cards"""

    __tablename__ = "account"

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)  # credit_card | checking | savings | cash
    closing_day = Column(Integer, nullable=True)
    payment_due_day = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Category(Base):
    """Expense or income category"""

    __tablename__ = "category"

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(String(16), nullable=False)  # expense | income
    is_default = Column(Boolean, nullable=False, default=False)


class Purchase(Base):
    """Logical real-world purchase, possibly split into installments"""

    __tablename__ = "purchase"

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    description = Column(Text, nullable=False)
    total_amount = Column(BigInteger, nullable=False)
    total_installments = Column(Integer, nullable=False, default=1)
    category_id = Column(Integer, ForeignKey("category.id"), nullable=False)
    external_id = Column(Text, nullable=True, index=True)
    provider_id = Column(Text, nullable=True)
    refunded_amount = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    entries = relationship("Entry", back_populates="purchase", cascade="all, delete-orphan")


class Entry(Base):
    """One installment of a purchase, attributed to one billing statement"""

    __tablename__ = "entry"
    __table_args__ = (UniqueConstraint("purchase_id", "installment_number", name="uq_entry_installment"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    purchase_id = Column(Integer, ForeignKey("purchase.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(Integer, ForeignKey("account.id"), nullable=False)
    amount = Column(BigInteger, nullable=False)
    purchase_date = Column(Date, nullable=False)
    statement_month = Column(String(7), nullable=False, index=True)  # YYYY-MM
    due_date = Column(Date, nullable=False)
    installment_number = Column(Integer, nullable=False, default=1)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    external_id = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    purchase = relationship("Purchase", back_populates="entries")


class Income(Base):
    """Income or refund; may point back at the purchase it refunds"""

    __tablename__ = "income"

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("account.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("category.id"), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(BigInteger, nullable=False)
    received_date = Column(Date, nullable=False)
    statement_month = Column(String(7), nullable=True, index=True)
    refunded_purchase_id = Column(Integer, ForeignKey("purchase.id", ondelete="SET NULL"), nullable=True)
    replenish_category_id = Column(Integer, ForeignKey("category.id"), nullable=True)
    external_id = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Transfer(Base):
    """Money moved between two of the user's accounts"""

    __tablename__ = "transfer"

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    from_account_id = Column(Integer, ForeignKey("account.id"), nullable=True)
    to_account_id = Column(Integer, ForeignKey("account.id"), nullable=True)
    amount = Column(BigInteger, nullable=False)
    date = Column(Date, nullable=False)
    external_id = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BillingStatement(Base):
    """Monthly statement aggregate ("fatura") of a credit-card account"""

    __tablename__ = "billing_statement"
    __table_args__ = (UniqueConstraint("account_id", "year_month", name="uq_statement_month"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("account.id"), nullable=False)
    year_month = Column(String(7), nullable=False)
    start_date = Column(Date, nullable=False)
    closing_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    total_amount = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
