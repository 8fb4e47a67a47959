"""Clasificación de errores de cámara para mensajes al operador"""
from enum import Enum


class CameraErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_CAMERA = "no_camera"
    DEVICE_BUSY = "device_busy"
    UNKNOWN = "unknown"


CAMERA_ERROR_MESSAGES = {
    CameraErrorKind.PERMISSION_DENIED: "Permiso de cámara denegado. Habilita el acceso a la cámara en el sistema.",
    CameraErrorKind.NO_CAMERA: "No se encontró una cámara. Verifica que el dispositivo tenga una conectada.",
    CameraErrorKind.DEVICE_BUSY: "La cámara está siendo usada por otra aplicación.",
    CameraErrorKind.UNKNOWN: "No se pudo iniciar la cámara.",
}

# Fragmentos de mensajes de drivers / navegadores, en orden de prioridad
_MESSAGE_HINTS = (
    (CameraErrorKind.PERMISSION_DENIED, ("permission denied", "notallowederror", "access denied")),
    (CameraErrorKind.NO_CAMERA, ("notfounderror", "no camera", "no such device", "not found")),
    (CameraErrorKind.DEVICE_BUSY, ("notreadableerror", "in use", "busy", "resource temporarily unavailable")),
)


class CameraError(Exception):
    """Falla de cámara ya clasificada"""

    def __init__(self, kind: CameraErrorKind, detail: str = ""):
        self.kind = kind
        self.message = CAMERA_ERROR_MESSAGES[kind]
        self.detail = detail
        super().__init__(f"{self.message} ({detail})" if detail else self.message)


def classify_camera_error(exc: BaseException) -> CameraError:
    if isinstance(exc, CameraError):
        return exc
    if isinstance(exc, PermissionError):
        return CameraError(CameraErrorKind.PERMISSION_DENIED, str(exc))
    if isinstance(exc, FileNotFoundError):
        return CameraError(CameraErrorKind.NO_CAMERA, str(exc))

    text = str(exc).lower()
    for kind, hints in _MESSAGE_HINTS:
        if any(hint in text for hint in hints):
            return CameraError(kind, str(exc))
    return CameraError(CameraErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")
