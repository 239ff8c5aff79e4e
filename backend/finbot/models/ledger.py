import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()


class LedgerInvoice(Base):
    __tablename__ = "ledger_invoices"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_invoice_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending','paid','overdue','cancelled')",
            name="chk_invoice_status",
        ),
        UniqueConstraint("owner_id", "invoice_number", name="uq_invoice_owner_number"),
        Index("idx_invoice_owner", "owner_id"),
        Index("idx_invoice_owner_status", "owner_id", "status"),
    )

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False)
    invoice_number = Column(String(64), nullable=False)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255))
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD", server_default=text("'USD'"))
    description = Column(Text)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date)
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    external_invoice_id = Column(String(64))  # accounting system InvoiceID when synced
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_transaction_amount_positive"),
        CheckConstraint("type IN ('income','expense')", name="chk_transaction_type"),
        Index("idx_transaction_owner", "owner_id"),
        Index("idx_transaction_owner_type", "owner_id", "type"),
    )

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False)
    transaction_ref = Column(String(64), nullable=False, unique=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=False)
    transaction_date = Column(Date, nullable=False)
    type = Column(String(16), nullable=False)
    category = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
