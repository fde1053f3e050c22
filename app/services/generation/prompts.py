"""
Промпты фотосета и стили. Стиль задаёт только префикс/суффикс, набор базовых промптов общий.
"""
from __future__ import annotations

PHOTOSET_PROMPTS: list[str] = [
    "Confident figure on a snowy alpine ridge, bright orange down jacket, arms folded, crisp high-altitude daylight, medium format sharpness.",
    "Relaxed figure on a yacht deck at golden hour, open blue linen shirt, Mediterranean coastline behind, warm film grading.",
    "Seated at a Parisian cafe terrace, white linen shirt, marble table with espresso, soft morning light through an awning.",
    "Striding down a city street in a navy blazer and white t-shirt, glass facades reflecting afternoon sun, street style editorial.",
    "Sitting on a wooden park bench at golden hour, cream knit sweater, dappled light through trees, shallow depth of field.",
    "Walking barefoot along a sandy beach at sunset, light linen outfit, soft wind in hair, warm backlight.",
    "Standing on a rooftop terrace at dusk, tailored dark suit, city skyline lights in soft bokeh.",
    "Leaning against a brick wall in a loft studio, black turtleneck, single window light, moody contrast.",
    "Browsing a vintage bookshop, camel coat, warm tungsten light, rows of old books in the background.",
    "Studio portrait on seamless grey backdrop, sculpted key light, minimal monochrome styling.",
    "Holding an umbrella on a rainy evening street, trench coat, neon reflections on wet pavement.",
    "Reading in a wood-paneled library, knit cardigan, green desk lamp glow, calm focused expression.",
    "At a modern office window, crisp shirt and rolled sleeves, cool daylight, executive portrait.",
    "Walking through a misty forest path, wool coat, soft diffused light, quiet cinematic mood.",
    "Autumn alley with falling leaves, oversized scarf, warm amber tones, candid half smile.",
    "Outdoor farmers market, linen shirt, baskets of fruit around, bright natural midday light.",
    "Playing an acoustic guitar in a cozy room, casual denim, warm practical lights.",
    "Sitting on vintage car hood on a desert road, sunglasses, hard sun and long shadows.",
    "Hotel lobby with art deco details, elegant evening attire, polished brass highlights.",
    "Coastal cliff overlooking the ocean, windbreaker, dramatic cloudy sky, wide environmental portrait.",
    "Art gallery with white walls and large canvases, monochrome outfit, soft gallery spotlights.",
    "Night city balcony with warm string lights, knit sweater, relaxed evening portrait.",
    "Sailing boat on a bright day, striped shirt, blue water and white sails, fresh nautical colors.",
]

STYLE_CONFIGS: dict[str, dict] = {
    "pinglass": {
        "name": "PinGlass Premium",
        "prefix": "Ultra-high-quality magazine editorial photograph. ",
        "suffix": " Professional retouching, campaign-ready commercial quality.",
    },
    "professional": {
        "name": "Профессиональный",
        "prefix": "Medium-format camera, executive magazine editorial style. ",
        "suffix": " Three-point lighting, confident executive presence, print-ready retouching.",
    },
    "lifestyle": {
        "name": "Lifestyle Glamour",
        "prefix": "85mm f/1.4 lens, lifestyle editorial photography. ",
        "suffix": " Natural golden-hour or window light, authentic moment, cinematic color grading.",
    },
    "creative": {
        "name": "Креативный High-Fashion",
        "prefix": "Specialty lens, high-fashion editorial. ",
        "suffix": " Dramatic lighting, bold composition, fine art quality.",
    },
}


def is_known_style(style_id: str) -> bool:
    return style_id in STYLE_CONFIGS


def build_prompts(style_id: str) -> list[str]:
    """Все базовые промпты в исходном порядке, обёрнутые префиксом/суффиксом стиля."""
    style = STYLE_CONFIGS.get(style_id)
    if style is None:
        raise KeyError(style_id)
    return [
        f"{style['prefix']}{prompt}{style['suffix']}"
        for prompt in PHOTOSET_PROMPTS
    ]
