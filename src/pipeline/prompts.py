"""Prompt templates for the LLM steps of the label pipeline.

Templates use ``str.format`` placeholders; literal JSON braces are doubled.
`StructuredLLM` appends the output schema and JSON-only instructions.
"""

from dataclasses import dataclass

from src.dsl import LabelDSL

from .models import LabelStyle


@dataclass(frozen=True)
class StyleGuideline:
    description: str
    characteristics: str
    layout: str
    imagery: str
    colors: str


STYLE_GUIDELINES: dict[LabelStyle, StyleGuideline] = {
    LabelStyle.CLASSIC: StyleGuideline(
        description="Traditional wine regions, established producers, time-honored varieties",
        characteristics="refined serif fonts, sophisticated color palettes, balanced proportions",
        layout=(
            "Symmetrical, centered compositions with traditional text positioning. "
            "Producer name at top center, wine name prominently below, vintage and "
            "region in balanced lower sections."
        ),
        imagery=(
            "Traditional vineyard scenes, estate imagery, vintage illustrations, "
            "heraldic elements, classic wine country landscapes"
        ),
        colors="Earth tones, deep burgundies, forest greens, golden accents, cream backgrounds",
    ),
    LabelStyle.MODERN: StyleGuideline(
        description="Contemporary wineries, innovative techniques, younger demographics",
        characteristics="clean sans-serif fonts, bold color contrasts, asymmetrical layouts",
        layout=(
            "Asymmetrical, dynamic layouts with bold text placement. Experiment with "
            "off-center positioning, varied text sizes, strong geometric image cropping."
        ),
        imagery=(
            "Abstract patterns, geometric shapes, minimalist photography, bold graphic "
            "elements, contemporary architectural elements"
        ),
        colors="High contrast combinations, pure whites, deep blacks, vibrant accent colors",
    ),
    LabelStyle.ELEGANT: StyleGuideline(
        description="Premium positioning, luxury market, sophisticated consumers",
        characteristics="script or refined serif fonts, rich color palettes, refined hierarchy",
        layout=(
            "Sophisticated, refined compositions with generous white space. Graceful "
            "text positioning, luxurious spacing, subtle image integration."
        ),
        imagery=(
            "Luxury textures, refined photography, subtle watercolors, sophisticated "
            "patterns, premium materials, artistic abstracts"
        ),
        colors="Rich jewel tones, metallic accents, deep wines, champagne golds, ivory whites",
    ),
    LabelStyle.FUNKY: StyleGuideline(
        description="Natural wines, creative producers, adventurous consumers",
        characteristics="unique font combinations, vibrant colors, experimental approaches",
        layout=(
            "Creative, experimental layouts with unconventional positioning. Playful "
            "text angles, vibrant image treatments, unexpected element placement."
        ),
        imagery=(
            "Vibrant illustrations, playful patterns, artistic collages, unconventional "
            "imagery, hand-drawn elements, mixed media textures"
        ),
        colors="Bright, unexpected combinations, neon accents, rainbow spectrums, bold contrasts",
    ),
}

ENUM_INSTRUCTIONS = """VALID ENUM VALUES (MUST USE EXACTLY):
- font: "primary" OR "secondary"
- color: "primary" OR "secondary" OR "accent" OR "background"
- align: "left" OR "center" OR "right"
- textTransform: "uppercase" OR "lowercase" OR "none"
- fit: "contain" OR "cover" OR "fill"
- shape: "rect" OR "line" """.rstrip()

WINE_DETAILS = """Wine Details:
- Producer: {producer_name}
- Wine Name: {wine_name}
- Vintage: {vintage}
- Variety: {variety}
- Region: {region}
- Appellation: {appellation}"""


def get_style_guideline(style: LabelStyle | str) -> StyleGuideline:
    return STYLE_GUIDELINES[LabelStyle(style)]


def image_prompt_guidelines(style: LabelStyle | str) -> str:
    """Style section of the image-prompts template."""
    style = LabelStyle(style)
    guideline = STYLE_GUIDELINES[style]
    return (
        f"STYLE-SPECIFIC IMAGE GUIDELINES for {style.value.upper()}:\n"
        f"- Theme: {guideline.description}\n"
        f"- Visual Style: {guideline.imagery}\n"
        f"- Color Palette: {guideline.colors}\n"
        f"- Aesthetic: {guideline.characteristics}"
    )


# =============================================================================
# Step Templates
# =============================================================================


DESIGN_SCHEME_PROMPT = (
    "You are a professional wine label designer creating a design scheme for a wine label.\n\n"
    + WINE_DETAILS
    + """

Style Direction: {style}

Based on this wine's characteristics, create a unique design scheme that reflects:
1. The wine variety's personality (e.g., bold Cabernet, elegant Pinot Noir, crisp Sauvignon Blanc)
2. The regional terroir and cultural heritage
3. The producer's brand positioning
4. The target market and price point

Canvas Sizing Guidelines:
- Standard wine labels: 750-900px wide, 1000-1200px tall
- Premium wines: 800-1000px wide, 1200-1500px tall
- Boutique/artisan: 700-800px wide, 900-1100px tall
- Choose DPI between 144-300 based on print quality needs

Color Palette Principles:
- Reflect wine variety characteristics (rich reds for Cabernet, golden tones for Chardonnay, etc.)
- Consider regional associations (Burgundy earth tones, Champagne elegance, etc.)
- Match the style direction and target demographic
- Ensure proper contrast for text readability

Typography Strategy:
- Primary font should embody the producer's personality
- Secondary font should complement and provide hierarchy
- Set hierarchy emphasis based on producer reputation and marketing strategy

Style Direction Guidelines:
"""
    + "\n".join(
        f"- {style.value}: {g.description}. {g.characteristics}"
        for style, g in STYLE_GUIDELINES.items()
    ).replace("{", "{{").replace("}", "}}")
    + """

{historical_examples}

Leave "assets" as an empty list; images are generated in a later step.
All color values MUST be valid hex strings (e.g., "#FF0000"). Choose colors that
authentically represent this specific wine and producer, not generic examples."""
)

IMAGE_PROMPTS_PROMPT = (
    "You are an AI image generation prompt engineer creating prompts for wine label imagery.\n\n"
    + WINE_DETAILS
    + """

Design Foundation:
- Palette: Primary {primary}, Secondary {secondary}, Accent {accent}, Background {background}
- Temperature: {temperature}, Contrast: {contrast}
- Typography: Primary font {primary_font}, Secondary font {secondary_font}
- Style Direction: {style}

{style_guidelines}

Create 2-4 image generation prompts that align with the {style} aesthetic and complement this design scheme.

Each prompt should specify:
- id: unique identifier (descriptive naming like "wine_bg_01", "decor_element_01")
- purpose: "background", "foreground", or "decoration"
- prompt: detailed description for image generation that matches the style guidelines above
- negativePrompt: what to avoid (optional but recommended)
- guidance: creativity level 1-20 (optional, default 7.5)
- aspect: aspect ratio from ["1:1", "3:2", "4:3", "16:9", "2:3", "3:4"]

Create prompts for:
1. A primary background or hero image that reflects the wine's personality
2. Supporting decorative elements that enhance the brand story
3. Additional accent imagery if needed to complete the composition

Always avoid: copyrighted content, text overlays, specific brand references, generic stock imagery.

Return expectedPrompts (the number of prompts) and the prompts array."""
)

DETAILED_LAYOUT_PROMPT = (
    "You are a wine label layout designer creating a unique composition that reflects "
    "this wine's character and brand positioning.\n\n"
    + WINE_DETAILS
    + """

Design Foundation:
- Canvas: {width}x{height} pixels, DPI {dpi}, Background: {background}
- Palette: Primary {primary}, Secondary {secondary}, Accent {accent}, Temperature {temperature}, Contrast {contrast}
- Assets available: {asset_count} images
- Style Direction: {style}

Asset Details:
{asset_details}

Typography System:
- Primary: {primary_font} {primary_weight} {primary_style}
- Secondary: {secondary_font} {secondary_weight} {secondary_style}
- Hierarchy: Producer emphasis {producer_emphasis}, Vintage prominence {vintage_prominence}, Region display {region_display}

LAYOUT DESIGN STRATEGY:
1. Let the wine variety and region guide the layout approach.
2. Use the hierarchy settings to decide text prominence.
3. Integrate every asset: backgrounds may be full-bleed, foregrounds are focal
   points, decorations are accents and borders.
4. Guide the eye through the information hierarchy with deliberate white space.

Style-specific layout approaches:
"""
    + "\n".join(
        f"- {style.value.upper()}: {g.layout} Images: {g.imagery}"
        for style, g in STYLE_GUIDELINES.items()
    ).replace("{", "{{").replace("}", "}}")
    + """

Return {{"elements": [...]}} where each element is a text, image or shape element, e.g.:
{{
  "id": "producer_text",
  "type": "text",
  "text": "{producer_name}",
  "bounds": {{"x": 0.1, "y": 0.05, "w": 0.8, "h": 0.1}},
  "z": 100,
  "font": "primary",
  "color": "primary",
  "align": "center",
  "fontSize": 36,
  "lineHeight": 1.2,
  "maxLines": 2,
  "textTransform": "uppercase"
}}

"""
    + ENUM_INSTRUCTIONS
    + """

CRITICAL REQUIREMENTS:
- Apply the {style} style approach
- Position elements using relative coordinates (0-1 range for x, y, w, h) with x + w <= 1 and y + h <= 1
- Create exactly {asset_count} image elements whose assetId values are: {asset_ids}
- Include ALL wine information as text elements (producer, wine name, vintage, variety, region, appellation)
- Element ids must be unique
- Use z-index values 0-1000 for proper layering"""
)

REFINE_PROMPT = (
    "You are a wine label design critic providing refinement suggestions.\n\n"
    + WINE_DETAILS
    + """

You are analyzing an EXISTING wine label design that needs improvement.
Preview: {preview_url}

Current Design Structure:
- Canvas: {width}x{height}
- Elements: {element_count} total elements
- Palette: {primary} primary, {secondary} secondary, {accent} accent, {background} background

EXISTING ELEMENTS IN CURRENT DESIGN (these are the ONLY elements you can modify):
{available_elements}

{feedback}

Suggest up to 5 specific edit operations that improve visual hierarchy,
readability, color balance, spacing and overall coherence.

Supported operations:

1. {{"type": "update_palette", "target": "primary" | "secondary" | "accent" | "background", "value": "#RRGGBB"}}
   Changes a palette color; affects every element bound to that role.

2. {{"type": "update_element", "elementId": "<id>", "property": "bounds" | "color" | "fontSize", "value": ...}}
   - bounds: {{"x": 0.0-1.0, "y": 0.0-1.0, "w": 0.0-1.0, "h": 0.0-1.0}}
   - color: "#RRGGBB" (converted to the closest palette role)
   - fontSize: number or hint ("larger", "smaller", "normal"), text elements only

REQUIREMENTS:
- Element ids MUST EXACTLY MATCH the ids listed above
- Be conservative; only suggest changes that clearly improve the design
- Maximum 10 operations
- Explain your changes in "reasoning" and rate your confidence (0-1)"""
)


# =============================================================================
# Prompt Inputs
# =============================================================================


def describe_elements(dsl: LabelDSL) -> str:
    """One line per element: ``- "id" (type: "text", text: "...")``."""
    lines = []
    for element in dsl.elements:
        line = f'- "{element.id}" (type: "{element.type}"'
        if element.type == "text":
            line += f', text: "{element.text}"'
        lines.append(line + ")")
    return "\n".join(lines) or "(no elements)"


def describe_assets(dsl_assets) -> str:
    """JSON-ish description of each asset for the layout prompt."""
    return "\n".join(
        f'- {{"id": "{a.id}", "type": "image", "url": "{a.url}", '
        f'"width": {a.width}, "height": {a.height}}}'
        for a in dsl_assets
    )


__all__ = [
    "StyleGuideline",
    "STYLE_GUIDELINES",
    "ENUM_INSTRUCTIONS",
    "get_style_guideline",
    "image_prompt_guidelines",
    "DESIGN_SCHEME_PROMPT",
    "IMAGE_PROMPTS_PROMPT",
    "DETAILED_LAYOUT_PROMPT",
    "REFINE_PROMPT",
    "describe_elements",
    "describe_assets",
]
