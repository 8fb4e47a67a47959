"""Enumeración y apertura de cámaras (OpenCV)"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence
import asyncio
import logging
import os
import threading

from services.ticket_validation.scanner.errors import CameraError, CameraErrorKind

logger = logging.getLogger(__name__)

BACK_CAMERA_HINTS = ("back", "rear", "environment")


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    label: str


@dataclass(frozen=True)
class DeviceSelector:
    """Un dispositivo concreto o una restricción de orientación"""
    device_id: Optional[str] = None
    facing_mode: Optional[str] = None


ENVIRONMENT_FACING = DeviceSelector(facing_mode="environment")


def select_device(devices: Sequence[DeviceInfo]) -> DeviceSelector:
    """Preferir la cámara trasera por etiqueta; si no hay, pedir una orientada al entorno"""
    for device in devices:
        label = device.label.lower()
        if any(hint in label for hint in BACK_CAMERA_HINTS):
            return DeviceSelector(device_id=device.device_id)
    return ENVIRONMENT_FACING


class CaptureHandle(Protocol):
    """Se usa desde hilos de trabajo: release no debe solaparse con un read_frame en curso"""

    def read_frame(self) -> Optional[Any]:
        ...

    def release(self) -> None:
        ...


class CameraBackend(Protocol):
    async def list_devices(self) -> List[DeviceInfo]:
        ...

    async def open(self, selector: DeviceSelector) -> CaptureHandle:
        ...


class OpenCVCaptureHandle:
    def __init__(self, capture, source: str):
        self._capture = capture
        self.source = source
        # read() y release() de VideoCapture corren en hilos distintos
        self._lock = threading.Lock()

    def read_frame(self) -> Optional[Any]:
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
            return frame if ok else None

    def release(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None


class OpenCVCameraBackend:
    """
    Backend de cámaras basado en cv2.VideoCapture.

    OpenCV no expone etiquetas de dispositivo; en Linux se leen de
    /sys/class/video4linux/videoN/name. La restricción "environment" se
    resuelve a `default_source` (índice o URL de stream, p.ej. una cámara IP).
    """

    def __init__(self, default_source: str = "0", probe_limit: int = 4, sysfs_root: str = "/sys/class/video4linux"):
        self.default_source = default_source
        self.probe_limit = probe_limit
        self.sysfs_root = Path(sysfs_root)

    def _label(self, index: int) -> str:
        try:
            return (self.sysfs_root / f"video{index}" / "name").read_text().strip()
        except OSError:
            return f"Camera {index}"

    def _probe(self) -> List[DeviceInfo]:
        import cv2

        devices = []
        for index in range(self.probe_limit):
            capture = cv2.VideoCapture(index)
            try:
                if capture.isOpened():
                    devices.append(DeviceInfo(device_id=str(index), label=self._label(index)))
            finally:
                capture.release()
        logger.debug(f"Cameras found: {devices}")
        return devices

    async def list_devices(self) -> List[DeviceInfo]:
        return await asyncio.to_thread(self._probe)

    def _unavailable(self, source: str) -> CameraError:
        if not source.isdigit():
            return CameraError(CameraErrorKind.NO_CAMERA, f"stream {source} unreachable")
        node = f"/dev/video{source}"
        if not os.path.exists(node):
            return CameraError(CameraErrorKind.NO_CAMERA, f"{node} not found")
        if not os.access(node, os.R_OK | os.W_OK):
            return CameraError(CameraErrorKind.PERMISSION_DENIED, f"{node} permission denied")
        return CameraError(CameraErrorKind.DEVICE_BUSY, f"{node} could not be opened")

    def _open(self, selector: DeviceSelector) -> OpenCVCaptureHandle:
        import cv2

        source = selector.device_id if selector.device_id is not None else self.default_source
        capture = cv2.VideoCapture(int(source)) if source.isdigit() else cv2.VideoCapture(source)
        if not capture.isOpened():
            capture.release()
            raise self._unavailable(source)
        logger.info(f"Camera opened: {source}")
        return OpenCVCaptureHandle(capture, source)

    async def open(self, selector: DeviceSelector) -> OpenCVCaptureHandle:
        return await asyncio.to_thread(self._open, selector)
