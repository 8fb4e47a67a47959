"""Decodificación de códigos QR (pyzbar) en frames de cámara e imágenes subidas"""
from typing import Any, List
import io
import logging

logger = logging.getLogger(__name__)


class ImageDecodeError(Exception):
    """El archivo subido no es una imagen legible"""


class QRDecoder:
    def decode_frame(self, frame: Any) -> List[str]:
        """
        Textos de los QR presentes en un frame (array de OpenCV o imagen PIL).

        Un frame sin código retorna []; nunca es un error.
        """
        from pyzbar.pyzbar import ZBarSymbol, decode
        from pyzbar.pyzbar_error import PyZbarError

        try:
            symbols = decode(frame, symbols=[ZBarSymbol.QRCODE])
        except PyZbarError as e:
            logger.debug(f"Frame decode failed: {e}")
            return []
        return [symbol.data.decode("utf-8", errors="replace") for symbol in symbols]

    def decode_image(self, data: bytes) -> List[str]:
        from PIL import Image, UnidentifiedImageError

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageDecodeError(f"Imagen no válida: {e}") from e
        return self.decode_frame(image.convert("L"))
