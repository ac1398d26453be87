"""
Метрики качества изображения для enhancement.

Все метрики нормализованы в [0, 1] и валидируются через ImageQualityMetrics.
"""

from typing import Tuple

import cv2
import numpy as np
import numpy.typing as npt
from pydantic import ValidationError

from config.settings import NOISE_SCALE, SHARPNESS_SCALE
from contracts.extraction_dto import StageMeasurement
from ..domain.contracts import ImageQualityMetrics, ContractValidationError


def _clamp(value: float) -> float:
    if np.isnan(value):
        return 0.0
    return float(min(1.0, max(0.0, value)))


def _gray(image: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)  # type: ignore[return-value]
    return image


def calculate_noise_level(image: npt.NDArray[np.uint8]) -> float:
    """Среднее стандартное отклонение по каналам / NOISE_SCALE."""
    _, std = cv2.meanStdDev(image)
    return _clamp(float(np.mean(std)) / NOISE_SCALE)


def calculate_contrast_ratio(image: npt.NDArray[np.uint8]) -> float:
    """Среднее по каналам (max - min) / 255, усреднение как у шума."""
    channels = image.reshape(-1, image.shape[2]) if image.ndim == 3 else image.reshape(-1, 1)
    spans = channels.max(axis=0).astype(np.float64) - channels.min(axis=0).astype(np.float64)
    return _clamp(float(np.mean(spans)) / 255.0)


def calculate_brightness(image: npt.NDArray[np.uint8]) -> float:
    return _clamp(float(_gray(image).mean()) / 255.0)


def calculate_sharpness(image: npt.NDArray[np.uint8]) -> float:
    """Дисперсия Лапласиана / SHARPNESS_SCALE."""
    laplacian = cv2.Laplacian(_gray(image), cv2.CV_64F)
    return _clamp(float(laplacian.var()) / SHARPNESS_SCALE)


def noise_and_contrast(image: npt.NDArray[np.uint8]) -> Tuple[float, float]:
    return calculate_noise_level(image), calculate_contrast_ratio(image)


def compute_quality_metrics(image: npt.NDArray[np.uint8]) -> ImageQualityMetrics:
    """
    Полный набор метрик.

    Raises:
        ContractValidationError: если метрики невалидны
    """
    try:
        return ImageQualityMetrics(
            noise_level=calculate_noise_level(image),
            contrast_ratio=calculate_contrast_ratio(image),
            brightness=calculate_brightness(image),
            sharpness=calculate_sharpness(image),
        )
    except ValidationError as e:
        raise ContractValidationError.from_pydantic("Enhancement", "ImageQualityMetrics", e)


def measure_stage(
    name: str,
    before: npt.NDArray[np.uint8],
    after: npt.NDArray[np.uint8]
) -> StageMeasurement:
    """Эффект одной стадии: шум и контраст до/после."""
    noise_before, contrast_before = noise_and_contrast(before)
    noise_after, contrast_after = noise_and_contrast(after)
    return StageMeasurement(
        name=name,
        noise_before=noise_before,
        noise_after=noise_after,
        contrast_before=contrast_before,
        contrast_after=contrast_after,
    )
