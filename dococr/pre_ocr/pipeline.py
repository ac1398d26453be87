"""
Enhancement Pipeline: нормализация качества скана перед OCR.

Фиксированный порядок стадий:
  [deskew] -> normalize_contrast (CLAHE) -> grayscale -> [remove_noise]
  -> sharpen -> contrast_stretch -> [binarize]

В скобках опциональные стадии (EnhancementOptions, по умолчанию выключены).

Функция чистая: одинаковые байты + опции -> одинаковый результат.
Многостраничный TIFF обрабатывается по кадрам и собирается обратно
в TIFF, на каждую страницу своя EnhancementRecord.
Неподдерживаемый вход (PDF, мусор) возвращается без изменений.
"""

from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np
import numpy.typing as npt
from loguru import logger

from config.settings import DESKEW_MIN_ANGLE, DESKEW_MAX_ANGLE, ENHANCEMENT_OUTPUT_FORMAT
from contracts.extraction_dto import EnhancementRecord, StageMeasurement
from contracts.queue_dto import EnhancementOptions
from ..domain.exceptions import ImageProcessingError
from ..domain.interfaces import IImageEnhancer
from . import filters
from .metrics import compute_quality_metrics, measure_stage

Stage = Callable[[npt.NDArray[np.uint8]], npt.NDArray[np.uint8]]


class EnhancementPipeline(IImageEnhancer):
    """Детерминированный препроцессор изображений."""

    def __init__(
        self,
        output_format: str = ENHANCEMENT_OUTPUT_FORMAT,
        min_skew_angle: float = DESKEW_MIN_ANGLE,
        max_skew_angle: float = DESKEW_MAX_ANGLE
    ) -> None:
        self.output_format = output_format
        self.min_skew_angle = min_skew_angle
        self.max_skew_angle = max_skew_angle
        logger.debug(f"[Enhancement] Инициализирован (output={output_format})")

    def enhance_pages(
        self,
        image_bytes: bytes,
        options: Optional[EnhancementOptions] = None
    ) -> Tuple[bytes, List[EnhancementRecord]]:
        options = options or EnhancementOptions()

        frames = filters.decode_frames(image_bytes)
        if frames is not None:
            logger.info(f"[Enhancement] Многостраничный документ: {len(frames)} стр.")
            pages = [self._enhance_page(frame, options, number) for number, frame in enumerate(frames, start=1)]
            return filters.encode_multipage_tiff([image for image, _ in pages]), [record for _, record in pages]

        image = filters.decode_image(image_bytes)
        if image is None:
            logger.info("[Enhancement] Формат не поддерживается, возвращаем исходные байты")
            return image_bytes, []

        image, record = self._enhance_page(image, options, 1)
        return filters.encode_image(image, self.output_format), [record]

    def _enhance_page(
        self,
        image: npt.NDArray[np.uint8],
        options: EnhancementOptions,
        page_number: int
    ) -> Tuple[npt.NDArray[np.uint8], EnhancementRecord]:
        before = compute_quality_metrics(image)
        stages: List[StageMeasurement] = []
        rotation_angle = 0.0

        if options.deskew:
            angle = filters.estimate_skew_angle(image)
            if self.min_skew_angle <= abs(angle) <= self.max_skew_angle:
                rotation_angle = angle
                image = self._run_stage(
                    "deskew", lambda img: filters.rotate_image(img, angle), image, stages
                )
            else:
                logger.debug(f"[Enhancement] Deskew пропущен: угол {angle:.2f}°")

        image = self._run_stage("normalize_contrast", filters.apply_clahe, image, stages)
        image = self._run_stage("grayscale", filters.apply_grayscale, image, stages)

        if options.remove_noise:
            image = self._run_stage("remove_noise", filters.apply_denoise, image, stages)

        image = self._run_stage("sharpen", filters.apply_sharpen, image, stages)
        image = self._run_stage("contrast_stretch", filters.apply_contrast_stretch, image, stages)

        if options.binarize:
            image = self._run_stage("binarize", filters.apply_binarize, image, stages)

        after = compute_quality_metrics(image)
        record = EnhancementRecord(
            page_number=page_number,
            before=before.to_measurement(),
            after=after.to_measurement(),
            rotation_angle=rotation_angle,
            operations=tuple(stage.name for stage in stages),
            stages=tuple(stages),
        )

        logger.info(
            f"[Enhancement] Стр. {page_number}: {' -> '.join(record.operations)} "
            f"(noise {before.noise_level:.3f} -> {after.noise_level:.3f}, "
            f"contrast {before.contrast_ratio:.3f} -> {after.contrast_ratio:.3f})"
        )
        return image, record

    def _run_stage(
        self,
        name: str,
        stage: Stage,
        image: npt.NDArray[np.uint8],
        stages: List[StageMeasurement]
    ) -> npt.NDArray[np.uint8]:
        try:
            result = stage(image)
        except cv2.error as e:
            raise ImageProcessingError(f"Стадия {name} упала", component="Enhancement", original_error=e)
        measurement = measure_stage(name, image, result)
        stages.append(measurement)
        logger.debug(
            f"[Enhancement] {name}: noise {measurement.noise_before:.3f} -> {measurement.noise_after:.3f}, "
            f"contrast {measurement.contrast_before:.3f} -> {measurement.contrast_after:.3f}"
        )
        return result
