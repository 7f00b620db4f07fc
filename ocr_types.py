# ocr_types.py
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

CONFIDENCE_GATE = 0.7

# ===================== Device families =====================
class DeviceFamily(str, Enum):
    """
    Display styles that need different conditioning:
      DARK_PANEL  - dark LCD, light text (Horiba analysers)
      LIGHT_PANEL - light-blue LCD, dark labels, white-on-dark values (Robonik)
    """
    DARK_PANEL = "dark_panel"
    LIGHT_PANEL = "light_panel"

    @property
    def display_name(self) -> str:
        return {"dark_panel": "Horiba", "light_panel": "Robonik"}[self.value]

    @classmethod
    def parse(cls, s: str) -> "DeviceFamily":
        key = (s or "").strip().lower()
        for fam in cls:
            if key in (fam.value, fam.name.lower(), fam.display_name.lower()):
                return fam
        raise ValueError(f"Unknown device family: {s!r}")


class TestType(str, Enum):
    GLUCOSE = "glucose"
    CREATININE = "creatinine"
    CHOLESTEROL = "cholesterol"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def unit(self) -> str:
        return "mg/dL"

# pytest would otherwise try to collect this enum as a test class
TestType.__test__ = False

# ===================== Geometry =====================
@dataclass(frozen=True)
class BBox:
    """Pixel rectangle, (x0, y0) top-left inclusive, (x1, y1) bottom-right exclusive."""
    x0: int
    y0: int
    x1: int
    y1: int

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    def to_dict(self) -> dict:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}


@dataclass(frozen=True)
class CropRegion:
    """Sub-rectangle given as fractions (0..1) of the parent image."""
    name: str
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"CropRegion {self.name!r} must have a positive size")
        if self.x < 0 or self.y < 0 or self.x + self.width > 1.0 or self.y + self.height > 1.0:
            raise ValueError(f"CropRegion {self.name!r} must lie within [0, 1]")

    def to_bbox(self, img_w: int, img_h: int) -> BBox:
        x0 = int(img_w * self.x); y0 = int(img_h * self.y)
        x1 = min(img_w, int(img_w * (self.x + self.width)))
        y1 = min(img_h, int(img_h * (self.y + self.height)))
        return BBox(x0, y0, max(x0 + 1, x1), max(y0 + 1, y1))

# ===================== Recognition output =====================
@dataclass(frozen=True)
class RecognizedLine:
    text: str
    bbox: Optional[BBox] = None


@dataclass(frozen=True)
class RecognizedBlock:
    lines: List[RecognizedLine] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(ln.text for ln in self.lines)


@dataclass(frozen=True)
class RecognitionOutput:
    full_text: str
    blocks: List[RecognizedBlock] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "RecognitionOutput":
        return cls(full_text="", blocks=[])

# ===================== Extraction results =====================
@dataclass(frozen=True)
class StripResult:
    index: int
    text: str
    value: Optional[float]
    bbox: BBox

    def to_dict(self) -> dict:
        return {"index": self.index, "text": self.text, "value": self.value,
                "bbox": self.bbox.to_dict()}


@dataclass(frozen=True)
class ExtractionResult:
    """
    A trusted mg/dL reading. Only values that cleared the confidence gate
    can be represented; anything else is "no result" (None) for callers.
    """
    value: float
    raw_text: str
    confidence: float
    bbox: Optional[BBox] = None
    strip_results: Optional[List[StripResult]] = None

    def __post_init__(self) -> None:
        if self.confidence < CONFIDENCE_GATE or self.confidence > 1.0:
            raise ValueError(f"confidence {self.confidence:.2f} is outside [{CONFIDENCE_GATE}, 1.0]")
        if self.value <= 0:
            raise ValueError("value must be positive")

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "unit": "mg/dL",
            "raw_text": self.raw_text,
            "confidence": round(self.confidence, 3),
            "bbox": self.bbox.to_dict() if self.bbox else None,
            "strip_results": [s.to_dict() for s in self.strip_results]
                             if self.strip_results is not None else None,
        }


@dataclass(frozen=True)
class ThresholdCandidate:
    level: int
    score: float
