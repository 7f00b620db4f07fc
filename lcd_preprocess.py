# lcd_preprocess.py
# Per-device image conditioning ahead of text recognition.
# Every transform returns a fresh array; callers' buffers are never written.
import io
import logging
import os
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from ocr_types import BBox, CropRegion, DeviceFamily, ThresholdCandidate

logger = logging.getLogger(__name__)

# ----- Tunables (no documented derivation; kept as the field-tested values) -----
HEAVY_CONTRAST_MAX = 25.0
MODERATE_CONTRAST_MAX = 55.0
HEAVY_CLAHE_CLIP = 3.0
MODERATE_CLAHE_CLIP = 2.0
CLAHE_TILE = (8, 8)
SHARPEN_AMOUNT = 0.4

THRESHOLD_START, THRESHOLD_STOP, THRESHOLD_STEP = 140, 170, 10
CANNY_LOW, CANNY_HIGH = 50, 150
MORPH_KERNEL = (2, 2)

# Camera guide rectangle as (left, top, right, bottom) fractions of the frame
GUIDE_BOX = (0.10, 0.15, 0.75, 0.85)

DEFAULT_LIGHT_PANEL_REGIONS: Tuple[CropRegion, ...] = (
    CropRegion("test_type", x=0.35, y=0.05, width=0.30, height=0.25),
    CropRegion("value", x=0.05, y=0.35, width=0.40, height=0.30),
)


def threshold_sweep(start: int = THRESHOLD_START, stop: int = THRESHOLD_STOP,
                    step: int = THRESHOLD_STEP) -> Tuple[int, ...]:
    """Inclusive sweep, e.g. 140..170 step 10 -> (140, 150, 160, 170)."""
    if step <= 0:
        raise ValueError("step must be positive")
    return tuple(range(start, stop + 1, step))

THRESHOLD_LEVELS = threshold_sweep()

# ===================== Loading / cropping =====================
def robust_imread(path: str) -> Optional[np.ndarray]:
    """BGR image or None. np.fromfile keeps non-ASCII Windows paths working."""
    try:
        if os.path.isfile(path):
            img = cv2.imdecode(np.fromfile(path, dtype=np.uint8), cv2.IMREAD_COLOR)
            if img is not None:
                return img
            with open(path, "rb") as f:
                pil = Image.open(io.BytesIO(f.read())).convert("RGB")
            return cv2.cvtColor(np.array(pil), cv2.COLOR_RGB2BGR)
    except (OSError, ValueError) as e:
        logger.warning("Could not decode %s: %s", path, e)
    return None


def _check_image(image: np.ndarray) -> None:
    if image is None or image.size == 0 or image.ndim not in (2, 3):
        raise ValueError("image must be a non-empty 2-D (gray) or 3-D (BGR/BGRA) array")


def crop_to_guide_box(image: np.ndarray, box: Tuple[float, float, float, float] = GUIDE_BOX) -> np.ndarray:
    _check_image(image)
    h, w = image.shape[:2]
    l, t, r, b = box
    x0 = max(0, int(w * l)); y0 = max(0, int(h * t))
    x1 = min(w, int(w * r)); y1 = min(h, int(h * b))
    if x1 <= x0 or y1 <= y0:
        raise ValueError(f"guide box {box} is empty for a {w}x{h} image")
    return image[y0:y1, x0:x1].copy()


def crop_region(image: np.ndarray, region: CropRegion) -> Tuple[np.ndarray, BBox]:
    _check_image(image)
    h, w = image.shape[:2]
    bb = region.to_bbox(w, h)
    return image[bb.y0:bb.y1, bb.x0:bb.x1].copy(), bb

# ===================== Contrast / enhancement =====================
def to_grayscale(image: np.ndarray) -> np.ndarray:
    _check_image(image)
    if image.ndim == 2:
        return image.copy()
    ch = image.shape[2]
    if ch == 1:
        return image[:, :, 0].copy()
    if ch == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def compute_contrast(gray: np.ndarray) -> float:
    _, std = cv2.meanStdDev(gray)
    return float(std[0][0])


def select_enhancement(contrast: float,
                       heavy_max: float = HEAVY_CONTRAST_MAX,
                       moderate_max: float = MODERATE_CONTRAST_MAX) -> str:
    if contrast < heavy_max:
        return "heavy"
    if contrast < moderate_max:
        return "moderate"
    return "none"


def heavy_enhance(gray: np.ndarray) -> np.ndarray:
    clahe = cv2.createCLAHE(clipLimit=HEAVY_CLAHE_CLIP, tileGridSize=CLAHE_TILE)
    enhanced = clahe.apply(gray)
    blur = cv2.GaussianBlur(enhanced, (3, 3), 0)
    return cv2.addWeighted(enhanced, 1.0 + SHARPEN_AMOUNT, blur, -SHARPEN_AMOUNT, 0)


def moderate_enhance(gray: np.ndarray) -> np.ndarray:
    clahe = cv2.createCLAHE(clipLimit=MODERATE_CLAHE_CLIP, tileGridSize=CLAHE_TILE)
    return clahe.apply(gray)

_ENHANCERS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "heavy": heavy_enhance,
    "moderate": moderate_enhance,
    "none": lambda g: g,
}

# ===================== Threshold selection (light panel) =====================
def binarize_inverted(gray: np.ndarray, level: int) -> np.ndarray:
    """Pixels >= level become white, then invert so text is white-on-black."""
    bw = (gray >= level).astype(np.uint8) * 255
    return cv2.bitwise_not(bw)


def score_binary(binary: np.ndarray) -> float:
    """
    Heuristic "looks like isolated strokes on a clean background" score in [0, 1].
    Not learned; the ratio bands and weights are tunable.
    """
    total = float(binary.shape[0] * binary.shape[1])
    white_ratio = cv2.countNonZero(binary) / total
    if white_ratio < 0.05 or white_ratio > 0.40:
        ratio_score = 0.0
    elif 0.10 <= white_ratio <= 0.30:
        ratio_score = 1.0
    else:
        ratio_score = 0.5
    edges = cv2.Canny(binary, CANNY_LOW, CANNY_HIGH)
    edge_score = min(1.0, max(0.0, cv2.countNonZero(edges) / total))
    return 0.7 * ratio_score + 0.3 * edge_score


Scorer = Callable[[np.ndarray], float]


def evaluate_thresholds(gray: np.ndarray, levels: Sequence[int] = THRESHOLD_LEVELS,
                        scorer: Optional[Scorer] = None) -> List[ThresholdCandidate]:
    scorer = scorer or score_binary
    return [ThresholdCandidate(level=lv, score=scorer(binarize_inverted(gray, lv))) for lv in levels]


def select_best_threshold(gray: np.ndarray, levels: Sequence[int] = THRESHOLD_LEVELS,
                          scorer: Optional[Scorer] = None) -> np.ndarray:
    if not levels:
        raise ValueError("at least one threshold level is required")
    scorer = scorer or score_binary
    best: Optional[ThresholdCandidate] = None
    best_img: Optional[np.ndarray] = None
    for lv in levels:
        inv = binarize_inverted(gray, lv)
        cand = ThresholdCandidate(level=lv, score=scorer(inv))
        # strict '>' so ties keep the earliest level
        if best is None or cand.score > best.score:
            best, best_img = cand, inv
    logger.debug("threshold %d selected (score %.3f)", best.level, best.score)
    return best_img


def clean_binary(binary: np.ndarray) -> np.ndarray:
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, MORPH_KERNEL)
    closed = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)
    return cv2.morphologyEx(closed, cv2.MORPH_OPEN, kernel)

# ===================== Entry points =====================
def preprocess_dark_panel(image: np.ndarray) -> np.ndarray:
    gray = to_grayscale(image)
    contrast = compute_contrast(gray)
    tier = select_enhancement(contrast)
    logger.debug("dark panel contrast %.1f -> %s enhancement", contrast, tier)
    return _ENHANCERS[tier](gray)


def preprocess_light_panel(image: np.ndarray, levels: Sequence[int] = THRESHOLD_LEVELS) -> np.ndarray:
    gray = to_grayscale(image)
    return clean_binary(select_best_threshold(gray, levels))


def preprocess(image: np.ndarray, family: DeviceFamily,
               threshold_levels: Sequence[int] = THRESHOLD_LEVELS) -> np.ndarray:
    if family is DeviceFamily.DARK_PANEL:
        return preprocess_dark_panel(image)
    return preprocess_light_panel(image, threshold_levels)
