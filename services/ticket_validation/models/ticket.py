"""Modelos Pydantic para validación de tickets"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum


class TicketStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"  # Pagado: el único estado admitible
    FAILED = "failed"
    CANCELLED = "cancelled"
    USED = "used"  # Terminal
    UNKNOWN = "unknown"  # Valor guardado fuera del vocabulario conocido; nunca admitible


STATUS_SYNONYMS = {
    "successful": "success",
    "completed": "success",
    "canceled": "cancelled",
    "processing": "pending",
}

KNOWN_STATUSES = frozenset(status.value for status in TicketStatus)


class Ticket(BaseModel):
    """Credencial de admisión tal como la ve el núcleo de verificación"""
    model_config = ConfigDict(frozen=True, from_attributes=True, populate_by_name=True)

    reference: str = Field(validation_alias="tx_ref")
    status: TicketStatus
    quantity: int = Field(default=1, ge=1)
    holder_name: Optional[str] = Field(default=None, validation_alias="customer_name")
    holder_email: Optional[str] = Field(default=None, validation_alias="customer_email")
    holder_phone: Optional[str] = Field(default=None, validation_alias="customer_phone")
    event_label: Optional[str] = Field(default=None, validation_alias="event_title")
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    raw_status: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        # Filas antiguas guardan el estado con mayúsculas o con sinónimos del gateway de pago
        if isinstance(value, str):
            value = value.strip().lower()
            value = STATUS_SYNONYMS.get(value, value)
            if value not in KNOWN_STATUSES:
                return TicketStatus.UNKNOWN
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, value):
        # Mismo criterio que al guardar el ticket: cantidad inválida cuenta como 1
        if value is None or (isinstance(value, int) and value < 1):
            return 1
        return value

    @property
    def is_admittable(self) -> bool:
        return self.status is TicketStatus.SUCCESS

    @property
    def is_used(self) -> bool:
        return self.status is TicketStatus.USED

    @property
    def status_label(self) -> str:
        """Estado para mostrar: el valor guardado cuando no es uno conocido"""
        return self.raw_status or self.status.value

    @classmethod
    def from_record(cls, record) -> "Ticket":
        """Construye el ticket desde una fila ORM conservando un estado desconocido"""
        ticket = cls.model_validate(record)
        if ticket.status is TicketStatus.UNKNOWN:
            return ticket.model_copy(update={"raw_status": str(record.status).strip()})
        return ticket


class TicketView(BaseModel):
    """Ticket serializado para el presentador"""
    reference: str
    status: str
    quantity: int
    holder_name: Optional[str] = None
    holder_email: Optional[str] = None
    holder_phone: Optional[str] = None
    event_label: Optional[str] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None


class VerifyRequest(BaseModel):
    payload: str = Field(..., max_length=4096, description="Texto decodificado del QR o ingresado a mano")


class VerificationResponse(BaseModel):
    outcome: str
    title: str
    message: str
    severity: str
    retryable: bool
    can_admit: bool
    reference: Optional[str] = None
    ticket: Optional[TicketView] = None


class ScannedCountResponse(BaseModel):
    operator_id: str
    count: Optional[int] = None
