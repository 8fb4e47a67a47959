"""Modelos SQLAlchemy compatibles con Supabase"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tx_ref = Column(String, unique=True, index=True, nullable=False)  # Referencia de la transacción
    event_id = Column(String, nullable=True)
    event_title = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True, index=True)
    customer_phone = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False, server_default="0")
    currency = Column(String, nullable=False, server_default="ETB")
    quantity = Column(Integer, nullable=False, server_default="1")
    status = Column(String, nullable=False, server_default="pending")  # pending, success, failed, cancelled, used
    payment_date = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)  # Cuando fue admitido
    verified_by = Column(String, nullable=True)  # Operador que admitió
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, server_default="user")  # user, admin, scanner
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TicketScanner(Base):
    """Operadores habilitados para escanear tickets en la entrada"""
    __tablename__ = "ticket_scanners"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
