"""
Pre-OCR: Фильтры и операции обработки изображений.

Утилиты низкого уровня. Все функции детерминированы и не меняют вход.
"""

import io
from typing import List, Optional

import cv2
import numpy as np
import numpy.typing as npt
from PIL import Image, ImageSequence, UnidentifiedImageError

from config.settings import (
    CLAHE_CLIP_LIMIT, CLAHE_TILE_SIZE,
    DENOISE_STRENGTH, DENOISE_TEMPLATE_SIZE, DENOISE_SEARCH_SIZE,
    ENHANCEMENT_OUTPUT_FORMAT,
)
from ..domain.exceptions import ImageProcessingError

SHARPEN_KERNEL = np.array(
    [[0, -1, 0],
     [-1, 5, -1],
     [0, -1, 0]],
    dtype=np.float32,
)


def decode_image(image_bytes: bytes) -> Optional[npt.NDArray[np.uint8]]:
    """
    Декодирует байты в BGR массив (первый кадр для многостраничных TIFF).

    Returns:
        None если байты не являются поддерживаемым изображением (PDF, мусор)
    """
    if not image_bytes:
        return None
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error:
        return None
    if image is None or image.size == 0:
        return None
    return image  # type: ignore[return-value]


def encode_image(image: npt.NDArray[np.uint8], extension: str = ENHANCEMENT_OUTPUT_FORMAT) -> bytes:
    """Кодирует изображение без потерь (PNG по умолчанию)."""
    ok, buffer = cv2.imencode(extension, image)
    if not ok:
        raise ImageProcessingError(
            message=f"cv2.imencode не смог закодировать изображение в {extension}",
            component="filters"
        )
    return buffer.tobytes()


def decode_frames(image_bytes: bytes) -> Optional[List[npt.NDArray[np.uint8]]]:
    """
    Кадры многостраничного изображения (TIFF) как BGR массивы.

    Returns:
        None если кадр один или байты не открываются через PIL
    """
    if not image_bytes:
        return None
    try:
        with Image.open(io.BytesIO(image_bytes)) as pil_image:
            if getattr(pil_image, "n_frames", 1) <= 1:
                return None
            return [
                cv2.cvtColor(np.asarray(frame.convert("RGB")), cv2.COLOR_RGB2BGR)
                for frame in ImageSequence.Iterator(pil_image)
            ]
    except (UnidentifiedImageError, OSError, ValueError):
        return None


def encode_multipage_tiff(images: List[npt.NDArray[np.uint8]]) -> bytes:
    """Собирает страницы в один TIFF без сжатия с потерями."""
    if not images:
        raise ImageProcessingError(message="Нет страниц для TIFF", component="filters")
    pil_pages = [
        Image.fromarray(image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2RGB))
        for image in images
    ]
    buffer = io.BytesIO()
    pil_pages[0].save(buffer, format="TIFF", save_all=True, append_images=pil_pages[1:])
    return buffer.getvalue()


def apply_grayscale(image: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
    """Преобразует изображение в grayscale."""
    if len(image.shape) == 2:
        return image.copy()
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)  # type: ignore[return-value]


def apply_clahe(
    image: npt.NDArray[np.uint8],
    clip_limit: float = CLAHE_CLIP_LIMIT,
    tile_size: int = CLAHE_TILE_SIZE
) -> npt.NDArray[np.uint8]:
    """
    CLAHE по яркостному каналу.

    Цветное изображение: L канал в LAB, цвет не трогаем.
    Grayscale: напрямую.
    """
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    if len(image.shape) == 2:
        return clahe.apply(image)  # type: ignore[return-value]

    lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
    lightness, a_channel, b_channel = cv2.split(lab)
    lab = cv2.merge((clahe.apply(lightness), a_channel, b_channel))
    return cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)  # type: ignore[return-value]


def apply_sharpen(image: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
    """Повышение резкости ядром 3x3."""
    return cv2.filter2D(image, -1, SHARPEN_KERNEL)  # type: ignore[return-value]


def apply_contrast_stretch(image: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
    """Линейное растяжение min/max в 0..255."""
    low = int(image.min())
    high = int(image.max())
    if high == low:
        return image.copy()
    return cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX)  # type: ignore[return-value]


def apply_denoise(
    image: npt.NDArray[np.uint8],
    strength: int = DENOISE_STRENGTH,
    template_size: int = DENOISE_TEMPLATE_SIZE,
    search_size: int = DENOISE_SEARCH_SIZE
) -> npt.NDArray[np.uint8]:
    """
    Non-local means денойзинг.

    Args:
        image: Исходное изображение
        strength: Интенсивность (1-100, default 10)
    """
    if len(image.shape) == 2:
        return cv2.fastNlMeansDenoising(image, None, strength, template_size, search_size)  # type: ignore[return-value]
    return cv2.fastNlMeansDenoisingColored(image, None, strength, strength, template_size, search_size)  # type: ignore[return-value]


def apply_binarize(image: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
    """Бинаризация Otsu."""
    gray = apply_grayscale(image)
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return binary  # type: ignore[return-value]


def estimate_skew_angle(image: npt.NDArray[np.uint8]) -> float:
    """
    Угол наклона текста через minAreaRect по тёмным пикселям.

    Returns:
        Угол в градусах в (-45, 45], 0.0 если текста почти нет
    """
    gray = apply_grayscale(image)
    _, mask = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    ys, xs = np.where(mask > 0)
    if len(xs) < 10:
        return 0.0

    points = np.column_stack((xs, ys)).astype(np.float32)
    angle = float(cv2.minAreaRect(points)[-1])

    # minAreaRect отдаёт [-90, 0) или (0, 90] в зависимости от версии OpenCV
    while angle > 45.0:
        angle -= 90.0
    while angle <= -45.0:
        angle += 90.0
    return angle


def rotate_image(image: npt.NDArray[np.uint8], angle: float) -> npt.NDArray[np.uint8]:
    """Поворот вокруг центра, края заполняются соседними пикселями."""
    height, width = image.shape[:2]
    matrix = cv2.getRotationMatrix2D((width / 2.0, height / 2.0), angle, 1.0)
    return cv2.warpAffine(  # type: ignore[return-value]
        image, matrix, (width, height),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_REPLICATE,
    )
