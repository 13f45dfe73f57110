from __future__ import annotations

from app.analysis import ImageAnalysis, RoomType, build_instructions

ANALYSIS_PROMPT = """You are a professional real estate photographer and image enhancement specialist analyzing an Airbnb listing image for optimization opportunities.

OBJECTIVE: Enhance real estate photos to appear professionally shot while maintaining authenticity (NO fake elements).

CRITICAL: Identify the room type accurately. Beds = bedroom, stovetop/sink = kitchen, toilet/shower = bathroom, sofas/TV = living_room, outdoor space = exterior. Only use "other" if the room type is genuinely ambiguous.

Analyze room type and context, lighting, composition and framing, technical quality, clutter and staging (people must be removed), and color and tone.

Return ONLY valid JSON with this exact structure:
{
  "room_type": "bedroom|kitchen|bathroom|living_room|exterior|other",
  "room_context": {
    "size": "small|medium|large",
    "layout": "open|closed|mixed",
    "key_features": ["large_windows", "high_ceilings", "modern_fixtures", "natural_light", "architectural_details"],
    "selling_points": ["spacious_feel", "natural_light", "modern_design", "luxury_finishes", "outdoor_access"]
  },
  "lighting": {
    "quality": "excellent|good|poor",
    "type": "natural|artificial|mixed",
    "brightness": "too_dark|good|too_bright",
    "distribution": "even|uneven|harsh",
    "color_temperature": "warm|neutral|cool|mixed",
    "issues": ["harsh_shadows", "uneven_lighting", "color_cast", "dim_corners", "overexposed_areas", "yellow_tint", "blue_tint"],
    "needs_enhancement": ["brighten_rooms", "simulate_daylight", "avoid_shadows", "adjust_contrast", "fix_white_balance", "even_lighting", "warm_lighting"]
  },
  "composition": {
    "framing": "good|needs_adjustment",
    "angle": "optimal|too_low|too_high|off_center",
    "symmetry": "good|needs_correction",
    "perspective": "wide_angle|normal|telephoto|distorted",
    "key_selling_points_visible": true,
    "vertical_lines": "straight|slightly_tilted|significantly_tilted",
    "horizontal_lines": "straight|slightly_tilted|significantly_tilted",
    "issues": ["poor_angle", "cut_off_elements", "asymmetrical", "not_centered", "tilted_lines", "distorted_perspective"],
    "needs_enhancement": ["reframe_wide_angle", "center_balanced", "highlight_selling_points", "correct_vertical_lines", "correct_horizontal_lines", "improve_perspective"]
  },
  "technical_quality": {
    "sharpness": "excellent|good|poor",
    "noise_level": "low|medium|high",
    "exposure": "perfect|underexposed|overexposed|mixed",
    "color_balance": "neutral|warm|cool|color_cast",
    "focus": "sharp|slightly_soft|blurry",
    "issues": ["blurry", "noisy", "washed_out", "oversaturated", "soft_focus", "motion_blur"],
    "needs_enhancement": ["sharpen_edges", "clean_noise", "adjust_exposure", "enhance_textures", "improve_focus", "reduce_blur"]
  },
  "clutter_and_staging": {
    "people_present": false,
    "clutter_level": "minimal|moderate|high",
    "distracting_objects": ["cords", "personal_items", "random_counters", "messy_areas", "toiletries", "clothes", "electronics"],
    "styling_needs": ["straighten_pillows", "smooth_bed_sheets", "align_chairs", "fold_towels", "align_cushions", "organize_items", "clean_surfaces"],
    "needs_removal": ["people", "cords", "personal_items", "clutter", "distracting_objects", "toiletries", "clothes", "electronics"],
    "organization_opportunities": ["tidy_surfaces", "align_furniture", "organize_items", "clean_areas", "straighten_objects"]
  },
  "color_and_tone": {
    "current_tone": "neutral|warm|cool|mixed",
    "saturation_level": "low|good|high",
    "white_balance": "good|too_warm|too_cool",
    "color_accuracy": "accurate|slightly_off|significantly_off",
    "mood": "inviting|neutral|cold|overwhelming",
    "needs_enhancement": ["apply_professional_filter", "warm_tones", "neutral_whites", "enhance_saturation", "consistency_filter", "improve_white_balance", "adjust_color_temperature"]
  },
  "enhancement_priority": ["lighting", "composition", "styling", "technical_quality", "color_tone"],
  "specific_improvements": {
    "lighting_fixes": [],
    "composition_fixes": [],
    "styling_fixes": [],
    "technical_fixes": [],
    "color_fixes": []
  },
  "batch_consistency": {
    "needs_consistency_filter": true,
    "style_reference": "first_image|none",
    "consistency_notes": "Maintain same lighting style, color temperature, and enhancement level across batch"
  }
}
List fields must contain only the issues actually present in the image."""

CORE_INSTRUCTIONS = {
    RoomType.BEDROOM: "Transform this bedroom into a luxury hotel-quality space optimized for Airbnb listings:",
    RoomType.KITCHEN: "Transform this kitchen into a premium real estate showcase optimized for Airbnb listings:",
    RoomType.BATHROOM: "Transform this bathroom into a spa-like luxury space optimized for Airbnb listings:",
    RoomType.LIVING_ROOM: "Transform this living room into a warm, inviting space optimized for Airbnb listings:",
    RoomType.EXTERIOR: "Transform this exterior into a stunning property showcase optimized for Airbnb listings:",
    RoomType.OTHER: "Transform this room into a professional real estate showcase optimized for Airbnb listings:",
}

TECHNICAL_REQUIREMENTS = """TECHNICAL REQUIREMENTS:
- Resize to 16:9 ratio (1024x683px minimum)
- Maintain authenticity - NO fake elements"""

STYLE_REFERENCE_NOTE = (
    "BATCH CONSISTENCY: Apply this professional real estate photography style as reference for batch consistency."
)
FOLLOW_REFERENCE_NOTE = (
    "BATCH CONSISTENCY: Maintain consistent lighting style, color temperature and enhancement level "
    "with the first image of this batch."
)


def build_generation_prompt(room_type: RoomType, analysis: ImageAnalysis) -> str:
    sections = [
        CORE_INSTRUCTIONS.get(room_type, CORE_INSTRUCTIONS[RoomType.OTHER]),
        "\n".join(build_instructions(room_type, analysis)),
        TECHNICAL_REQUIREMENTS,
        "Apply changes precisely as specified above.",
    ]
    if analysis.is_style_reference:
        sections.append(STYLE_REFERENCE_NOTE)
    elif analysis.batch_consistency.needs_consistency_filter:
        sections.append(FOLLOW_REFERENCE_NOTE)
    return "\n\n".join(sections)
