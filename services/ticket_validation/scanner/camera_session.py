"""
Sesión de cámara para escaneo continuo de QR.

    IDLE -> STARTING -> ACTIVE -> IDLE

El dispositivo se libera en un único punto (`_shutdown`), tanto al detener
la sesión como al decodificar un código o al fallar la lectura.
"""
from enum import Enum
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from services.ticket_validation.scanner.decoder import QRDecoder
from services.ticket_validation.scanner.devices import (
    ENVIRONMENT_FACING,
    CameraBackend,
    CaptureHandle,
    DeviceSelector,
    select_device,
)
from services.ticket_validation.scanner.errors import CameraError, CameraErrorKind, classify_camera_error

logger = logging.getLogger(__name__)

ScanCallback = Callable[[str], Awaitable[None]]
ErrorCallback = Callable[[CameraError], Awaitable[None]]


class CameraState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"


class CameraSessionManager:
    def __init__(
        self,
        backend: CameraBackend,
        decoder: Optional[QRDecoder] = None,
        frame_interval: float = 0.1,
        max_read_failures: int = 30,
    ):
        self._backend = backend
        self._decoder = decoder or QRDecoder()
        self.frame_interval = frame_interval
        self.max_read_failures = max_read_failures

        self.state = CameraState.IDLE
        self._generation = 0
        self._handle: Optional[CaptureHandle] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._pending_read: Optional[asyncio.Future] = None
        self._on_scan: Optional[ScanCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    @property
    def is_active(self) -> bool:
        return self.state is CameraState.ACTIVE

    async def start(self, on_scan: ScanCallback, on_error: Optional[ErrorCallback] = None) -> bool:
        """
        Abrir la cámara y comenzar a decodificar.

        Returns:
            True si se inició una sesión nueva; False si ya había una en curso
            o si stop() llegó mientras se abría el dispositivo.

        Raises:
            CameraError: no se pudo abrir la cámara (ya clasificado)
        """
        if self.state is not CameraState.IDLE:
            logger.debug(f"Camera start ignored, state={self.state.value}")
            return False

        self._generation += 1
        generation = self._generation
        self.state = CameraState.STARTING
        self._on_scan = on_scan
        self._on_error = on_error

        try:
            selector = await self._choose_device()
            handle = await self._backend.open(selector)
        except asyncio.CancelledError:
            if generation == self._generation:
                self.state = CameraState.IDLE
            raise
        except Exception as e:
            error = classify_camera_error(e)
            logger.warning(f"Camera start failed ({error.kind.value}): {e}")
            if generation == self._generation:
                self.state = CameraState.IDLE
            raise error from e

        if generation != self._generation:
            # stop() durante la apertura: el dispositivo recién abierto no se usa
            await self._release(handle)
            return False

        self._handle = handle
        self.state = CameraState.ACTIVE
        self._loop_task = asyncio.create_task(self._decode_loop(generation, handle))
        logger.info("Camera session started")
        return True

    async def stop(self):
        """Detener la sesión. Sin efecto si no hay una en curso."""
        if self.state is CameraState.IDLE:
            return
        await self._shutdown(self._generation, cancel_loop=True)
        logger.info("Camera session stopped")

    async def scan_once(self, timeout: Optional[float] = None) -> str:
        """Iniciar la cámara, esperar un código y detenerla"""
        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()

        async def on_scan(payload: str):
            if not result.done():
                result.set_result(payload)

        async def on_error(error: CameraError):
            if not result.done():
                result.set_exception(error)

        if not await self.start(on_scan, on_error):
            raise RuntimeError("Ya hay una sesión de cámara en curso")
        try:
            return await asyncio.wait_for(result, timeout=timeout)
        finally:
            await self.stop()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _choose_device(self) -> DeviceSelector:
        try:
            devices = await self._backend.list_devices()
        except Exception as e:
            logger.info(f"Camera enumeration failed, requesting environment-facing camera: {e}")
            return ENVIRONMENT_FACING
        return select_device(devices)

    async def _decode_loop(self, generation: int, handle: CaptureHandle):
        failures = 0
        payload = None
        error = None

        try:
            while generation == self._generation:
                # La lectura corre en un hilo que cancel() no detiene; _shutdown la espera
                read = asyncio.ensure_future(asyncio.to_thread(handle.read_frame))
                self._pending_read = read
                frame = await asyncio.shield(read)
                if generation != self._generation:
                    return
                if frame is None:
                    failures += 1
                    if failures >= self.max_read_failures:
                        error = CameraError(CameraErrorKind.DEVICE_BUSY, f"{failures} lecturas fallidas seguidas")
                        break
                    await asyncio.sleep(self.frame_interval)
                    continue

                failures = 0
                decoded = self._decoder.decode_frame(frame)
                if decoded:
                    payload = decoded[0]
                    break
                await asyncio.sleep(self.frame_interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_camera_error(e)

        if not await self._shutdown(generation, cancel_loop=False):
            return

        # La tarea del loop no tiene quien la espere: un callback que falla solo se registra
        try:
            if payload is not None:
                logger.info("QR decoded, camera released")
                await self._on_scan(payload)
            elif error is not None:
                logger.warning(f"Camera session failed ({error.kind.value}): {error.detail}")
                if self._on_error is not None:
                    await self._on_error(error)
        except Exception as e:
            logger.error(f"Scan callback failed: {type(e).__name__}: {e}", exc_info=True)

    async def _shutdown(self, generation: int, cancel_loop: bool) -> bool:
        if generation != self._generation:
            return False
        self._generation += 1

        handle, task, pending = self._handle, self._loop_task, self._pending_read
        self._handle = None
        self._loop_task = None
        self._pending_read = None
        self.state = CameraState.IDLE

        if cancel_loop and task is not None and task is not asyncio.current_task():
            task.cancel()
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)
        if handle is not None:
            await self._release(handle)
        return True

    async def _release(self, handle: CaptureHandle):
        try:
            await asyncio.to_thread(handle.release)
        except Exception as e:
            logger.warning(f"Error releasing camera: {e}")
