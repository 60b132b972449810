STYLE_GUIDES = {
    "dark-academia": "dark moody lighting, vintage academic setting, rich browns and deep greens, mysterious atmosphere, gothic architecture, candlelight, old books",
    "paranormal-romance": "ethereal lighting, magical atmosphere, soft focus romance, supernatural elements, misty background, moonlight, passionate mood",
    "paranormal-cozy": "warm magical lighting, cozy interior, magical creatures, soft colors, enchanted objects, whimsical atmosphere, comfort and wonder",
    "paranormal-dark": "dark supernatural atmosphere, ominous lighting, horror elements, deep shadows, eerie mood, gothic, dangerous beauty",
    "cozy-fantasy": "warm golden lighting, fantasy village, magical creatures, enchanted forest, soft warm colors, inviting atmosphere, whimsical details",
    "contemporary": "modern realistic setting, natural lighting, urban or suburban backdrop, relatable spaces, authentic mood, clean composition",
    "mystery-thriller": "dramatic shadows, noir lighting, suspenseful atmosphere, urban night scenes, rain-slicked streets, mysterious mood, tension",
    "romantasy": "romantic fantasy blend, soft magical lighting, epic romance, enchanted castles, starlit skies, sweeping gowns and armor, luminous mood",
    "cinematic": "cinematic composition, dramatic lighting, film grain, movie-like quality, professional cinematography, epic scale",
}

DEFAULT_AESTHETIC = "cinematic"

# (top, bottom) gradient colours for offline placeholder frames
AESTHETIC_PALETTES = {
    "dark-academia": ((59, 42, 30), (24, 48, 36)),
    "paranormal-romance": ((92, 60, 120), (200, 170, 210)),
    "paranormal-cozy": ((170, 110, 70), (240, 210, 170)),
    "paranormal-dark": ((20, 10, 30), (70, 20, 40)),
    "cozy-fantasy": ((200, 140, 60), (250, 230, 180)),
    "contemporary": ((90, 120, 150), (220, 225, 230)),
    "mystery-thriller": ((15, 20, 35), (60, 70, 90)),
    "romantasy": ((120, 60, 110), (240, 190, 200)),
    "cinematic": ((20, 20, 25), (110, 90, 70)),
}


AESTHETIC_OPTIONS = [
    {"value": "dark-academia", "label": "Dark Academia", "description": "Moody lighting, vintage academic setting, gothic architecture"},
    {"value": "paranormal-romance", "label": "Paranormal Romance", "description": "Ethereal lighting, magical atmosphere, supernatural romance"},
    {"value": "paranormal-cozy", "label": "Paranormal Cozy", "description": "Warm magical lighting, cozy interior, whimsical atmosphere"},
    {"value": "paranormal-dark", "label": "Paranormal Dark", "description": "Dark supernatural atmosphere, horror elements, gothic"},
    {"value": "cozy-fantasy", "label": "Cozy Fantasy", "description": "Warm golden lighting, fantasy village, enchanted forest"},
    {"value": "contemporary", "label": "Contemporary", "description": "Modern realistic setting, natural lighting, urban backdrop"},
    {"value": "mystery-thriller", "label": "Mystery/Thriller", "description": "Dramatic shadows, noir lighting, suspenseful atmosphere"},
    {"value": "romantasy", "label": "Romantasy", "description": "Romantic fantasy blend, soft magical lighting, epic romance"},
    {"value": "cinematic", "label": "Cinematic", "description": "Film-like quality, dramatic lighting, professional cinematography"},
]


def get_style_guide(aesthetic: str) -> str:
    return STYLE_GUIDES.get(aesthetic, STYLE_GUIDES[DEFAULT_AESTHETIC])


def get_palette(aesthetic: str):
    return AESTHETIC_PALETTES.get(aesthetic, AESTHETIC_PALETTES[DEFAULT_AESTHETIC])


NARRATION_PROMPT_TEMPLATE = """Create a compelling 30-second voiceover narration for a book trailer.

Book Title: "{title}"
Summary: {summary}

Requirements:
- Keep it under 100 words (approximately 30 seconds when spoken)
- Make it dramatic and engaging
- Don't give away major spoilers
- End with a hook that makes viewers want to read the book
- Do NOT include any stage directions or speaker notes

Respond ONLY with the narration text, nothing else."""


SCENE_PROMPT_TEMPLATE = """You are a visual director. Create {num_scenes} distinct scene descriptions for a book trailer video.

Book Summary: "{summary}"

Visual Style: {style_guide}

Create {num_scenes} scenes that tell the story visually. Each scene should be a detailed image description (50-80 words) suitable for AI image generation.

Respond ONLY with a JSON array of strings:
["Scene 1 description...", "Scene 2 description...", ...]

Focus on:
- Vivid visual details
- Mood and atmosphere
- Character positioning (but no specific faces)
- Lighting and color palette
- Camera angle/composition"""


IMAGE_PROMPT_TEMPLATE = (
    "Create a detailed, high-quality image of this scene in 3:4 portrait aspect ratio "
    "({width}x{height} pixels): {scene}. Style: {style_guide}, cinematic lighting, high quality, "
    "detailed, 4k resolution. The image MUST be in portrait orientation (taller than wide, 3:4 ratio). "
    "Output only the generated image."
)


def fallback_scenes(summary: str, num_scenes: int):
    beats = [
        f"Opening scene establishing the world and mood of the story: {summary[:100]}",
        "A pivotal moment showing the main characters in their environment",
        "Rising tension or conflict scene with dramatic lighting",
        "Climactic moment capturing the emotional peak of the story",
        "Resolution or hook scene leaving viewers wanting more",
    ]
    # cycle the beats when more scenes are requested than there are beats
    return [beats[i % len(beats)] for i in range(num_scenes)]


ANALYSIS_PROMPT_TEMPLATE = """Analyze this book and provide structured JSON output:

Book: "{title}" by {author}
Description: {description}
Genres: {genres}

Respond ONLY with valid JSON (no markdown, no explanation):
{{
  "summary": "2-3 sentence summary of the book's essence",
  "tropes": ["trope1", "trope2", "trope3", "trope4"],
  "aesthetic": "one-word aesthetic category like: cozy-fantasy, dark-academia, paranormal-romance, contemporary, mystery-thriller, paranormal-cozy, paranormal-dark",
  "vibeCollage": "Vivid sensory description of the book's mood, atmosphere, and aesthetic (2-3 sentences with colors, lighting, textures, and emotions)"
}}"""


AESTHETIC_PROMPT_TEMPLATE = """Recommend an aesthetic category for this book:

Book: "{title}"
Description: {description}
Genres: {genres}

Choose ONE of these aesthetics:
- dark-academia: Dark, mysterious, library settings, secrets
- paranormal-romance: Supernatural romance, magic, emotional
- paranormal-cozy: Magic with comfort, whimsical, safe
- paranormal-dark: Dark supernatural, horror, ominous
- cozy-fantasy: Fantasy with warmth, adventure, comforting
- contemporary: Modern day, realistic, relatable
- mystery-thriller: Suspenseful, secrets, tension

Respond ONLY with the aesthetic name, nothing else."""


SUMMARY_PROMPT_TEMPLATE = """Write a compelling 2-3 sentence summary for this book:

Book: "{title}"
Description: {description}

Provide ONLY the summary, nothing else."""
