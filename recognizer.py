# recognizer.py
# Boundary to the text-recognition engine. The rest of the code only sees
# Recognizer.recognize() -> RecognitionOutput and RecognitionError.
import logging
import os
import shutil
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

import numpy as np
import pytesseract
from pytesseract import Output

from ocr_types import BBox, RecognitionOutput, RecognizedBlock, RecognizedLine

logger = logging.getLogger(__name__)


class RecognitionError(RuntimeError):
    """The engine could not produce text for an image."""


class Recognizer(ABC):

    @abstractmethod
    def recognize(self, image: np.ndarray) -> RecognitionOutput:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

# ===================== Tesseract =====================
def setup_tesseract_path(explicit: Optional[str] = None) -> Optional[str]:
    for p in [explicit, os.environ.get("TESSERACT_CMD"), shutil.which("tesseract")]:
        if p and os.path.isfile(p):
            pytesseract.pytesseract.tesseract_cmd = p
            return p
    return None


def _union(boxes: List[BBox]) -> Optional[BBox]:
    if not boxes:
        return None
    return BBox(min(b.x0 for b in boxes), min(b.y0 for b in boxes),
                max(b.x1 for b in boxes), max(b.y1 for b in boxes))


def blocks_from_tsv(data: Dict[str, list]) -> RecognitionOutput:
    """
    Build blocks/lines from pytesseract.image_to_data(..., output_type=DICT).
    A block is a tesseract paragraph (block_num, par_num); a line is
    (block_num, par_num, line_num). Words keep tesseract's order.
    """
    lines: "OrderedDict[Tuple[int, int, int], List[Tuple[str, BBox]]]" = OrderedDict()
    for i, text in enumerate(data.get("text", [])):
        if int(data["level"][i]) != 5:
            continue
        word = (text or "").strip()
        if not word:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        l, t = int(data["left"][i]), int(data["top"][i])
        w, h = int(data["width"][i]), int(data["height"][i])
        lines.setdefault(key, []).append((word, BBox(l, t, l + w, t + h)))

    blocks: "OrderedDict[Tuple[int, int], List[RecognizedLine]]" = OrderedDict()
    for (b, p, _), words in lines.items():
        line = RecognizedLine(text=" ".join(w for w, _ in words), bbox=_union([bb for _, bb in words]))
        blocks.setdefault((b, p), []).append(line)

    out_blocks = [RecognizedBlock(lines=ls) for ls in blocks.values()]
    full_text = "\n".join(blk.text for blk in out_blocks)
    return RecognitionOutput(full_text=full_text, blocks=out_blocks)


class TesseractRecognizer(Recognizer):
    """
    Recognizer backed by the tesseract binary via pytesseract.
    psm 6 (uniform block) suits a cropped analyser display.
    """

    def __init__(self, lang: str = "eng", psm: int = 6, oem: int = 3,
                 tesseract_cmd: Optional[str] = None, timeout: float = 0):
        self.lang = lang
        self.config = f"--oem {oem} --psm {psm}"
        self.timeout = timeout
        self.tesseract_cmd = setup_tesseract_path(tesseract_cmd)
        if self.tesseract_cmd is None:
            logger.warning("tesseract binary not found; relying on PATH at call time")

    def recognize(self, image: np.ndarray) -> RecognitionOutput:
        if image is None or image.size == 0:
            raise RecognitionError("cannot recognize an empty image")
        try:
            data = pytesseract.image_to_data(image, lang=self.lang, config=self.config,
                                             timeout=self.timeout, output_type=Output.DICT)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError,
                RuntimeError, OSError) as e:
            raise RecognitionError(f"tesseract failed: {e}") from e
        return blocks_from_tsv(data)
