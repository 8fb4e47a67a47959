"""Rutas de verificación y admisión de tickets"""
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from typing import Dict
import asyncio
import logging

from app.core.config import settings
from shared.auth.access import ScannerAccess
from shared.auth.dependencies import get_current_scanner, get_scanner_access
from shared.database.connection import get_session_maker
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.ticket import (
    ScannedCountResponse,
    VerificationResponse,
    VerifyRequest,
)
from services.ticket_validation.scanner.decoder import ImageDecodeError, QRDecoder
from services.ticket_validation.services.outcomes import Malformed
from services.ticket_validation.services.presenter import render_outcome
from services.ticket_validation.services.ticket_repository import SqlTicketRepository, TicketRepository
from services.ticket_validation.services.verification_controller import (
    OperatorNotAuthorized,
    VerificationController,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ticket_repository() -> TicketRepository:
    return SqlTicketRepository(get_session_maker())


def get_qr_decoder() -> QRDecoder:
    return QRDecoder()


def get_verification_controller(
    repository: TicketRepository = Depends(get_ticket_repository),
    access: ScannerAccess = Depends(get_scanner_access),
) -> VerificationController:
    return VerificationController(
        repository,
        access=access,
        timeout_seconds=settings.LOOKUP_TIMEOUT_SECONDS,
    )


@router.post("/verify", response_model=VerificationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def verify_payload(
    request: Request,  # Necesario para rate limiter
    verify_request: VerifyRequest,
    current_user: Dict = Depends(get_current_scanner),
    controller: VerificationController = Depends(get_verification_controller),
):
    """
    Verificar el texto de un QR (decodificado por el cliente o ingresado a mano).

    Solo lectura: nunca marca el ticket como usado.
    """
    controller.begin_scan()
    outcome = await controller.verify(verify_request.payload)
    return VerificationResponse(**render_outcome(outcome))


@router.post("/verify/image", response_model=VerificationResponse)
@limiter.limit(RATE_LIMITS["upload"])
async def verify_image(
    request: Request,
    file: UploadFile = File(...),
    current_user: Dict = Depends(get_current_scanner),
    controller: VerificationController = Depends(get_verification_controller),
    decoder: QRDecoder = Depends(get_qr_decoder),
):
    """Verificar una foto del QR subida por el operador"""
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"La imagen supera el máximo de {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB"
        )

    controller.begin_scan()
    try:
        payloads = await asyncio.to_thread(decoder.decode_image, data)
    except ImageDecodeError as e:
        logger.info(f"Uploaded image rejected ({file.filename}): {e}")
        outcome = Malformed(raw_payload="", reason="El archivo no es una imagen válida")
        return VerificationResponse(**render_outcome(outcome))

    if not payloads:
        outcome = Malformed(raw_payload="", reason="No se encontró un código QR en la imagen")
        return VerificationResponse(**render_outcome(outcome))

    outcome = await controller.verify(payloads[0])
    return VerificationResponse(**render_outcome(outcome))


@router.post("/{reference}/admit", response_model=VerificationResponse)
@limiter.limit(RATE_LIMITS["admit"])
async def admit_ticket(
    request: Request,
    reference: str,
    current_user: Dict = Depends(get_current_scanner),
    controller: VerificationController = Depends(get_verification_controller),
):
    """
    Admitir al portador: marca el ticket como usado por el operador autenticado.

    La escritura es condicional (solo success -> used); si otro scanner lo
    admitió primero, la respuesta es already_used.
    """
    try:
        outcome = await controller.admit(reference, current_user)
    except OperatorNotAuthorized:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Se requieren permisos de scanner"
        )
    return VerificationResponse(**render_outcome(outcome))


@router.get("/scanned/count", response_model=ScannedCountResponse)
@limiter.limit(RATE_LIMITS["default"])
async def scanned_count(
    request: Request,
    current_user: Dict = Depends(get_current_scanner),
    controller: VerificationController = Depends(get_verification_controller),
):
    """Tickets admitidos por el operador autenticado (null si no se pudo consultar)"""
    operator_id = current_user["user_id"]
    count = await controller.operator_tally(operator_id)
    return ScannedCountResponse(operator_id=operator_id, count=count)
