#!/usr/bin/env python3
"""
Puesto de escaneo en consola: cámara / imagen / texto -> verificar -> admitir

Uso:
    python scripts/scan_station.py --user-id <id> --email scanner@venue.cl
    python scripts/scan_station.py --user-id <id> --image foto_qr.jpg
    python scripts/scan_station.py --user-id <id> --manual
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, Optional

# Agregar directorio raíz al path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from shared.auth.access import ScannerAccess, SqlRoleDirectory
from shared.database.connection import close_db, get_session_maker, init_db
from services.ticket_validation.scanner.camera_session import CameraSessionManager
from services.ticket_validation.scanner.decoder import ImageDecodeError, QRDecoder
from services.ticket_validation.scanner.devices import OpenCVCameraBackend
from services.ticket_validation.scanner.errors import CameraError
from services.ticket_validation.services.outcomes import Malformed
from services.ticket_validation.services.presenter import render_outcome
from services.ticket_validation.services.ticket_repository import SqlTicketRepository
from services.ticket_validation.services.verification_controller import (
    OperatorNotAuthorized,
    VerificationController,
)

SEVERITY_ICONS = {"success": "✅", "info": "ℹ️ ", "warning": "⚠️ ", "error": "❌"}
YES = ("s", "si", "sí", "y", "yes")


def print_rendering(rendering: Dict):
    print(f"\n{SEVERITY_ICONS.get(rendering['severity'], '')} {rendering['title']}")
    print(f"   {rendering['message']}")
    ticket = rendering["ticket"]
    if ticket:
        print(f"   Referencia: {ticket['reference']}")
        print(f"   Titular:    {ticket['holder_name'] or '-'} ({ticket['holder_email'] or '-'})")
        print(f"   Evento:     {ticket['event_label'] or '-'}")
        print(f"   Cantidad:   {ticket['quantity']}")


async def ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


def read_image_payload(path: str, decoder: QRDecoder) -> Optional[str]:
    with open(path, "rb") as fh:
        data = fh.read()
    try:
        payloads = decoder.decode_image(data)
    except ImageDecodeError:
        print_rendering(render_outcome(Malformed(raw_payload="", reason="El archivo no es una imagen válida")))
        return None
    if not payloads:
        print_rendering(render_outcome(Malformed(raw_payload="", reason="No se encontró un código QR en la imagen")))
        return None
    return payloads[0]


async def run_cycle(controller: VerificationController, operator: Dict, payload: str):
    controller.begin_scan()
    rendering = render_outcome(await controller.verify(payload))
    print_rendering(rendering)

    if rendering["can_admit"]:
        answer = await ask("\n¿Permitir ingreso? [s/N]: ")
        if answer.lower() in YES:
            try:
                outcome = await controller.admit(rendering["reference"], operator)
            except OperatorNotAuthorized as e:
                print(f"\n❌ {e}")
                return
            print_rendering(render_outcome(outcome))

    controller.reset()


async def main(args) -> int:
    await init_db()
    session_maker = get_session_maker()

    operator = {"user_id": args.user_id, "email": args.email, "role": None}
    access = ScannerAccess(SqlRoleDirectory(session_maker), ttl_seconds=settings.ACCESS_CACHE_TTL_SECONDS)
    controller = VerificationController(
        SqlTicketRepository(session_maker),
        access=access,
        timeout_seconds=settings.LOOKUP_TIMEOUT_SECONDS,
    )
    decoder = QRDecoder()
    camera = CameraSessionManager(
        OpenCVCameraBackend(settings.CAMERA_SOURCE, settings.CAMERA_PROBE_LIMIT),
        decoder,
        frame_interval=settings.CAMERA_FRAME_INTERVAL,
        max_read_failures=settings.CAMERA_MAX_READ_FAILURES,
    )

    try:
        if not await access.can_scan(operator):
            print(f"❌ El usuario {args.user_id} no tiene permisos de scanner")
            return 1

        if args.image:
            payload = read_image_payload(args.image, decoder)
            if payload is not None:
                await run_cycle(controller, operator, payload)
            return 0

        async with camera:
            while True:
                if args.manual:
                    payload = await ask("\nCódigo del ticket (vacío para salir): ")
                    if not payload:
                        break
                else:
                    print("\n📷 Apunta la cámara al código QR (Ctrl+C para salir)...")
                    try:
                        payload = await camera.scan_once(timeout=args.timeout)
                    except CameraError as e:
                        print(f"❌ {e.message}")
                        return 1
                    except asyncio.TimeoutError:
                        print("⏱️  No se detectó ningún código, reintentando")
                        continue

                await run_cycle(controller, operator, payload)

                count = await controller.operator_tally(args.user_id)
                if count is not None:
                    print(f"\n🎟️  Tickets escaneados por ti: {count}")
    finally:
        await close_db()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Puesto de escaneo de tickets")
    parser.add_argument("--user-id", required=True, help="ID del operador")
    parser.add_argument("--email", help="Email del operador (para ticket_scanners)")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--image", help="Verificar una foto del QR en vez de usar la cámara")
    source.add_argument("--manual", action="store_true", help="Ingresar los códigos a mano")
    parser.add_argument("--timeout", type=float, default=60.0, help="Segundos de espera por un código en la cámara")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        print("\n👋 Puesto de escaneo cerrado")
        sys.exit(0)
