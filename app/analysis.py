"""Structured photo analysis returned by the vision model, and the rules derived from it.

The same :data:`ENHANCEMENT_RULES` table drives both the instructions sent to the
image generator and the bullet list shown to the user for a finished pair, so a
bullet can only appear when the matching issue was flagged in the analysis.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from app.exceptions import AnalysisError


class RoomType(str, Enum):
    BEDROOM = "bedroom"
    KITCHEN = "kitchen"
    BATHROOM = "bathroom"
    LIVING_ROOM = "living_room"
    EXTERIOR = "exterior"
    OTHER = "other"

    @classmethod
    def from_label(cls, value: Optional[str]) -> Optional["RoomType"]:
        """Map a free-form label to a known category, or ``None`` if it names none."""
        if not value:
            return None
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            return None


ROOM_TYPE_LABELS = {
    RoomType.BEDROOM: "Bedroom",
    RoomType.KITCHEN: "Kitchen",
    RoomType.BATHROOM: "Bathroom",
    RoomType.LIVING_ROOM: "Living Room",
    RoomType.EXTERIOR: "Exterior",
    RoomType.OTHER: "Other",
}

CONSISTENCY_NOTES = "Maintain same lighting style, color temperature, and enhancement level across batch"


class RoomContext(BaseModel):
    size: Literal["small", "medium", "large"]
    layout: str = "mixed"
    key_features: List[str] = Field(default_factory=list)
    selling_points: List[str] = Field(default_factory=list)


class LightingAnalysis(BaseModel):
    quality: Literal["excellent", "good", "poor"]
    type: str = "mixed"
    brightness: str = "good"
    distribution: str = "even"
    color_temperature: str = "neutral"
    issues: List[str] = Field(default_factory=list)
    needs_enhancement: List[str] = Field(default_factory=list)


class CompositionAnalysis(BaseModel):
    framing: Literal["good", "needs_adjustment"]
    angle: str = "optimal"
    symmetry: str = "good"
    perspective: str = "normal"
    key_selling_points_visible: bool = True
    vertical_lines: str = "straight"
    horizontal_lines: str = "straight"
    issues: List[str] = Field(default_factory=list)
    needs_enhancement: List[str] = Field(default_factory=list)


class TechnicalQuality(BaseModel):
    sharpness: str = "good"
    noise_level: str = "low"
    exposure: str = "perfect"
    color_balance: str = "neutral"
    focus: str = "sharp"
    issues: List[str] = Field(default_factory=list)
    needs_enhancement: List[str] = Field(default_factory=list)


class ClutterAndStaging(BaseModel):
    people_present: bool = False
    clutter_level: str = "minimal"
    distracting_objects: List[str] = Field(default_factory=list)
    styling_needs: List[str] = Field(default_factory=list)
    needs_removal: List[str] = Field(default_factory=list)
    organization_opportunities: List[str] = Field(default_factory=list)


class ColorAndTone(BaseModel):
    current_tone: str = "neutral"
    saturation_level: str = "good"
    white_balance: str = "good"
    color_accuracy: str = "accurate"
    mood: str = "neutral"
    needs_enhancement: List[str] = Field(default_factory=list)


class SpecificImprovements(BaseModel):
    lighting_fixes: List[str] = Field(default_factory=list)
    composition_fixes: List[str] = Field(default_factory=list)
    styling_fixes: List[str] = Field(default_factory=list)
    technical_fixes: List[str] = Field(default_factory=list)
    color_fixes: List[str] = Field(default_factory=list)


class BatchConsistency(BaseModel):
    needs_consistency_filter: bool = False
    style_reference: Literal["first_image", "none"] = "none"
    consistency_notes: str = ""


class ImageAnalysis(BaseModel):
    room_type: RoomType
    room_context: RoomContext
    lighting: LightingAnalysis
    composition: CompositionAnalysis
    technical_quality: TechnicalQuality
    clutter_and_staging: ClutterAndStaging
    color_and_tone: ColorAndTone
    enhancement_priority: List[str]
    specific_improvements: SpecificImprovements = Field(default_factory=SpecificImprovements)
    batch_consistency: BatchConsistency = Field(default_factory=BatchConsistency)

    @property
    def is_style_reference(self) -> bool:
        return self.batch_consistency.style_reference == "first_image"


_fence_re = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_analysis_text(text: str) -> ImageAnalysis:
    """Parse the model's reply into an :class:`ImageAnalysis`.

    Replies are frequently wrapped in a markdown code fence; the fence is
    stripped before decoding.

    Raises
    ------
    AnalysisError
        If the reply is not JSON or does not match the expected structure.
    """

    cleaned = _fence_re.sub("", (text or "").strip())
    if not cleaned:
        raise AnalysisError("Empty analysis response")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AnalysisError(f"Failed to parse analysis response: {exc}") from exc
    try:
        return ImageAnalysis.model_validate(data)
    except ValidationError as exc:
        raise AnalysisError(f"Invalid analysis response: {exc.error_count()} validation error(s)") from exc


def annotate_batch_consistency(analyses: Sequence[ImageAnalysis]) -> List[ImageAnalysis]:
    """Return copies of ``analyses`` with the batch-consistency hint filled in.

    Exactly one analysis, the first in submission order, becomes the style
    reference; every other one is asked to stay consistent with it.
    """

    annotated: List[ImageAnalysis] = []
    for index, analysis in enumerate(analyses):
        consistency = BatchConsistency(
            needs_consistency_filter=True,
            style_reference="first_image" if index == 0 else "none",
            consistency_notes=CONSISTENCY_NOTES,
        )
        annotated.append(analysis.model_copy(update={"batch_consistency": consistency}, deep=True))
    return annotated


def resolve_room_type(listing_hint: Optional[str], detected: Optional[RoomType | str]) -> RoomType:
    """Pick the room type for one photo.

    A listing-level hint naming a known category wins; otherwise a specific
    detection is used; anything else falls back to ``OTHER``.
    """

    hinted = RoomType.from_label(listing_hint)
    if hinted is not None:
        return hinted
    detected_type = detected if isinstance(detected, RoomType) else RoomType.from_label(detected)
    if detected_type is not None and detected_type is not RoomType.OTHER:
        return detected_type
    return RoomType.OTHER


@dataclass(frozen=True)
class EnhancementRule:
    applies: Callable[[RoomType, ImageAnalysis], bool]
    instruction: str
    bullet: Optional[str] = None


def _tilted(value: str) -> bool:
    return value in {"slightly_tilted", "significantly_tilted"}


def _cluttered(analysis: ImageAnalysis) -> bool:
    return analysis.clutter_and_staging.clutter_level in {"high", "moderate"}


def _distracting(analysis: ImageAnalysis, item: str) -> bool:
    return item in analysis.clutter_and_staging.distracting_objects


def _styling(analysis: ImageAnalysis, item: str) -> bool:
    return item in analysis.clutter_and_staging.styling_needs


ENHANCEMENT_RULES: Sequence[EnhancementRule] = (
    EnhancementRule(
        lambda room, a: a.lighting.quality == "poor" or a.lighting.brightness == "too_dark",
        "Brighten the room evenly - eliminate dark corners and shadows",
        "Improved lighting and brightness",
    ),
    EnhancementRule(
        lambda room, a: "harsh_shadows" in a.lighting.issues,
        "Soften harsh shadows and create even lighting distribution",
        "Reduced harsh shadows",
    ),
    EnhancementRule(
        lambda room, a: "color_cast" in a.lighting.issues or "yellow_tint" in a.lighting.issues,
        "Correct color temperature - remove yellow/blue tint, achieve neutral white balance",
        "Corrected color temperature",
    ),
    EnhancementRule(
        lambda room, a: _tilted(a.composition.vertical_lines),
        "Straighten all vertical lines (walls, door frames, windows)",
        "Straightened architectural lines",
    ),
    EnhancementRule(
        lambda room, a: _tilted(a.composition.horizontal_lines),
        "Straighten all horizontal lines (countertops, furniture edges)",
        "Aligned horizontal elements",
    ),
    EnhancementRule(
        lambda room, a: a.composition.angle in {"too_low", "too_high"},
        "Adjust camera angle to optimal real estate photography height",
        "Improved framing and perspective",
    ),
    EnhancementRule(
        lambda room, a: "cut_off_elements" in a.composition.issues,
        "Reframe to include all important room elements",
    ),
    EnhancementRule(
        lambda room, a: a.technical_quality.sharpness == "poor" or a.technical_quality.focus == "blurry",
        "Sharpen image and improve focus clarity",
        "Enhanced image sharpness",
    ),
    EnhancementRule(
        lambda room, a: a.technical_quality.noise_level in {"high", "medium"},
        "Reduce image noise and grain",
    ),
    EnhancementRule(
        lambda room, a: a.technical_quality.exposure == "underexposed",
        "Increase exposure to proper brightness levels",
    ),
    EnhancementRule(
        lambda room, a: a.technical_quality.exposure == "overexposed",
        "Reduce exposure to prevent overexposed areas",
    ),
    EnhancementRule(
        lambda room, a: a.clutter_and_staging.people_present,
        "Remove all people from the image",
        "Removed people from image",
    ),
    EnhancementRule(
        lambda room, a: _cluttered(a) and _distracting(a, "cords"),
        "Remove all visible cords and cables",
        "Cleaned up visible cables and cords",
    ),
    EnhancementRule(
        lambda room, a: _cluttered(a) and _distracting(a, "personal_items"),
        "Remove personal items and belongings",
        "Removed personal belongings",
    ),
    EnhancementRule(
        lambda room, a: _cluttered(a) and _distracting(a, "random_counters"),
        "Clear all countertops and surfaces",
        "Cleaned up clutter and distractions",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.BEDROOM and _styling(a, "straighten_pillows"),
        "Straighten and fluff all pillows",
        "Straightened and fluffed pillows",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.BEDROOM and _styling(a, "smooth_bed_sheets"),
        "Smooth and straighten bed sheets",
        "Smoothed bed sheets",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.BATHROOM and _styling(a, "fold_towels"),
        "Fold and organize all towels neatly",
        "Folded and organized towels",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.BATHROOM and _distracting(a, "toiletries"),
        "Remove all toiletries and personal items",
        "Removed toiletries and personal items",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.LIVING_ROOM and _styling(a, "align_chairs"),
        "Align all chairs and furniture",
        "Aligned chairs and furniture",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.LIVING_ROOM and _styling(a, "align_cushions"),
        "Straighten and align all cushions",
        "Straightened cushions",
    ),
    EnhancementRule(
        lambda room, a: room is RoomType.KITCHEN and _distracting(a, "random_counters"),
        "Clear all countertops completely",
        "Cleared countertops",
    ),
    EnhancementRule(
        lambda room, a: a.color_and_tone.white_balance in {"too_warm", "too_cool"},
        "Correct white balance to neutral temperature",
    ),
    EnhancementRule(
        lambda room, a: a.color_and_tone.saturation_level == "low",
        "Slightly enhance saturation for wood, plants, and textiles (keep realistic)",
    ),
    EnhancementRule(
        lambda room, a: a.color_and_tone.saturation_level == "high",
        "Reduce oversaturation to natural levels",
    ),
    EnhancementRule(
        lambda room, a: a.color_and_tone.current_tone == "cool",
        "Add subtle warm tones to make space more inviting",
    ),
    EnhancementRule(
        lambda room, a: "enhance_textures" in a.technical_quality.needs_enhancement,
        "Enhance texture details in wood, fabric, and glass surfaces",
    ),
)

GENERIC_INSTRUCTIONS = (
    "Apply subtle professional real estate photography enhancement",
    "Ensure optimal brightness and contrast",
    "Maintain natural, inviting atmosphere",
)


def matching_rules(room_type: RoomType, analysis: ImageAnalysis) -> List[EnhancementRule]:
    return [rule for rule in ENHANCEMENT_RULES if rule.applies(room_type, analysis)]


def build_instructions(room_type: RoomType, analysis: ImageAnalysis) -> List[str]:
    instructions = [f"• {rule.instruction}" for rule in matching_rules(room_type, analysis)]
    return instructions or [f"• {line}" for line in GENERIC_INSTRUCTIONS]


def describe_enhancements(room_type: RoomType, analysis: Optional[ImageAnalysis]) -> List[str]:
    """Bullet lines describing what was changed in an optimized photo."""
    bullets: List[str] = []
    if analysis is not None:
        bullets = [f"• {rule.bullet}" for rule in matching_rules(room_type, analysis) if rule.bullet]
    if not bullets:
        label = ROOM_TYPE_LABELS[room_type].lower()
        bullets = [f"• Applied professional {label} enhancement"]
    return bullets
