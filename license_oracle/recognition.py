"""
OCR-based recognition of licence photos.

Flow: raw photo bytes → Pillow preprocessing → Tesseract → text cleanup → field extraction.

Preprocessing is NOT optional: phone photos of a licence at an angle and in
bad light are close to unreadable for Tesseract until they are upscaled,
greyscaled, contrast-normalised and sharpened.

Field extraction is PURE REGEX — an explicit, ordered tuple of named rules.
The first rule that matches anything wins, and its first match in scan order
is used. There is no scoring; ties are resolved by list position alone.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
from dataclasses import dataclass
from typing import Protocol

import pytesseract
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from .exceptions import RecognitionFailure
from .models import RecognitionResult

logger = logging.getLogger(__name__)

DEFAULT_MIN_WIDTH = 800
DEFAULT_GAMMA = 1.2


# ─── Pattern Rules ───────────────────────────────────────────────────


@dataclass(frozen=True)
class PatternRule:
    """A named extraction rule. Group 1 (when present) is the value."""

    name: str
    pattern: re.Pattern[str]

    def match(self, text: str) -> str | None:
        found = self.pattern.search(text)
        if found is None:
            return None
        return found.group(1) if self.pattern.groups else found.group(0)


def _rule(name: str, pattern: str, flags: int = 0) -> PatternRule:
    return PatternRule(name, re.compile(pattern, flags))


# UK formats first (most specific), then US formats, then generic fallbacks.
DOCUMENT_NUMBER_RULES: tuple[PatternRule, ...] = (
    _rule("uk_field_5", r"5\s+([A-Z]{5}\d+[A-Za-z]+)"),
    _rule("uk_mixed_case", r"\b([A-Z]{5}\d+[A-Za-z]+[a-z]*[A-Z]*)\b"),
    _rule("uk_variation", r"\b([A-Z]{3,5}\d{1,2}[A-Z]{2,8}[a-z]{0,5})\b"),
    _rule("us_labelled", r"(?:DL|LICENSE|LIC)[\s#:]*([A-Z]?\d{7,8})", re.IGNORECASE),
    _rule("us_letter_7_digits", r"(?:^|\s)([A-Z]\d{7})(?=\s|$)", re.MULTILINE),
    _rule("us_2_letters_6_digits", r"(?:^|\s)([A-Z]{2}\d{6})(?=\s|$)", re.MULTILINE),
    _rule("us_8_digits", r"(?:^|\s)(\d{8})(?=\s|$)", re.MULTILINE),
    _rule("us_letter_6_digits", r"(?:^|\s)([A-Z]\d{6})(?=\s|$)", re.MULTILINE),
    _rule("any_8_digits", r"\b(\d{8})\b"),
    _rule("any_letter_7_digits", r"\b([A-Z]\d{7})\b"),
)

EXPIRY_DATE_RULES: tuple[PatternRule, ...] = (
    _rule("mm_dd_yyyy_slash", r"\d{2}/\d{2}/\d{4}"),
    _rule("mm_dd_yyyy_dash", r"\d{2}-\d{2}-\d{4}"),
    _rule("yyyy_mm_dd", r"\d{4}-\d{2}-\d{2}"),
    _rule("mm_dd_yyyy_dot", r"\d{2}\.\d{2}\.\d{4}"),
)

_LABEL_PREFIX = re.compile(r"^(?:DL|LICENSE|LIC)[\s#:]*", re.IGNORECASE)


def first_match(rules: tuple[PatternRule, ...], text: str) -> tuple[str, str] | None:
    """Return (rule name, value) for the first rule that matches, else None."""
    for rule in rules:
        value = rule.match(text)
        if value:
            return rule.name, value
    return None


def extract_document_number(text: str) -> str | None:
    """Extract the licence number, with any label prefix ('DL#', 'LICENSE:') stripped."""
    hit = first_match(DOCUMENT_NUMBER_RULES, text)
    if hit is None:
        logger.info("No licence number found in OCR text")
        logger.debug("OCR text head: %r", text[:200])
        return None
    rule_name, value = hit
    number = _LABEL_PREFIX.sub("", value).strip()
    logger.info("Found licence number via rule %s", rule_name)
    return number or None


def extract_expiry_date(text: str) -> str | None:
    """Extract the first date-looking string. Best-effort, not parsed."""
    hit = first_match(EXPIRY_DATE_RULES, text)
    if hit is None:
        return None
    return hit[1]


def clean_ocr_text(text: str) -> str:
    """Strip separator glyphs, collapse whitespace runs, drop blank lines."""
    text = re.sub(r"[|~]", "", text)
    lines = (re.sub(r"[ \t\f\v]+", " ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


# ─── Image Preprocessing ─────────────────────────────────────────────


def preprocess_image(
    image_bytes: bytes,
    min_width: int = DEFAULT_MIN_WIDTH,
    gamma: float = DEFAULT_GAMMA,
) -> bytes:
    """Normalise a photo for OCR and return it as PNG bytes.

    Raises:
        RecognitionFailure: if the bytes are not a decodable image.
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise RecognitionFailure(
            "Image could not be decoded", details={"size": len(image_bytes)}
        ) from e

    image = ImageOps.exif_transpose(image)

    if image.width < min_width:
        height = max(1, round(image.height * min_width / image.width))
        image = image.resize((min_width, height), Image.Resampling.LANCZOS)

    image = ImageOps.grayscale(image)
    image = ImageOps.autocontrast(image)
    image = image.filter(ImageFilter.SHARPEN)
    lut = [round(255 * (v / 255) ** (1 / gamma)) for v in range(256)]
    image = image.point(lut)

    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


# ─── Engines ─────────────────────────────────────────────────────────


@dataclass
class EngineOutput:
    text: str
    confidence: float  # 0-100


class RecognitionEngine(Protocol):
    def recognize(self, image_bytes: bytes, language: str) -> EngineOutput: ...


class TesseractEngine:
    """pytesseract-backed engine. Requires the tesseract binary on PATH."""

    def recognize(self, image_bytes: bytes, language: str) -> EngineOutput:
        image = Image.open(io.BytesIO(image_bytes))
        data = pytesseract.image_to_data(
            image, lang=language, output_type=pytesseract.Output.DICT
        )
        scores = [float(c) for c in data.get("conf", []) if float(c) >= 0]
        confidence = sum(scores) / len(scores) if scores else 0.0
        text = pytesseract.image_to_string(image, lang=language)
        return EngineOutput(text=text, confidence=confidence)


# ─── Extractor ───────────────────────────────────────────────────────


class RecognitionExtractor:
    """Turns a licence photo into a RecognitionResult.

    Usage:
        extractor = RecognitionExtractor()
        result = await extractor.extract(photo_bytes)
        if result.document_number is None:
            # recoverable: show result.normalized_text to the user
            ...
    """

    def __init__(
        self,
        engine: RecognitionEngine | None = None,
        language: str = "eng",
        min_width: int = DEFAULT_MIN_WIDTH,
    ):
        self.engine = engine or TesseractEngine()
        self.language = language
        self.min_width = min_width

    async def extract(self, image_bytes: bytes) -> RecognitionResult:
        """Run preprocessing + OCR off the event loop and extract fields.

        Raises:
            RecognitionFailure: on undecodable input or an engine error.
        """
        logger.info("Starting licence image processing (%d bytes)", len(image_bytes))
        return await asyncio.to_thread(self._extract_sync, image_bytes)

    def _extract_sync(self, image_bytes: bytes) -> RecognitionResult:
        processed = preprocess_image(image_bytes, min_width=self.min_width)

        try:
            output = self.engine.recognize(processed, self.language)
        except RecognitionFailure:
            raise
        except Exception as e:
            raise RecognitionFailure(f"OCR engine failed: {e}") from e

        cleaned = clean_ocr_text(output.text)
        confidence = min(max(output.confidence, 0.0), 100.0)
        logger.info("OCR completed (confidence %.1f%%)", confidence)

        return RecognitionResult(
            normalized_text=cleaned,
            confidence=confidence,
            document_number=extract_document_number(cleaned),
            expiry_date=extract_expiry_date(cleaned),
        )
