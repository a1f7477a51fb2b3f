"""Built-in prompt suggestion catalog."""

from __future__ import annotations

from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.prompt_suggestion import PromptSuggestion


DEFAULT_PROMPT_SUGGESTIONS: List[Dict[str, str]] = [
    {
        "title": "Studio portrait",
        "prompt": "Close-up studio portrait of a woman with freckles, soft window light, 85mm lens, film grain",
        "aspect_ratio": "traditional_3_4",
    },
    {
        "title": "Cozy interior",
        "prompt": "Scandinavian living room at golden hour, linen sofa, dried flowers, warm light, editorial photo",
        "aspect_ratio": "classic_4_3",
    },
    {
        "title": "Fashion editorial",
        "prompt": "Model in an oversized camel coat walking through a Paris street in the rain, cinematic, 35mm",
        "aspect_ratio": "social_story_9_16",
    },
    {
        "title": "Product shot",
        "prompt": "Glass perfume bottle on wet black stone, water droplets, dramatic rim light, macro photography",
        "aspect_ratio": "square_1_1",
    },
    {
        "title": "Fantasy landscape",
        "prompt": "Floating islands above a misty valley at sunrise, waterfalls, epic scale, matte painting",
        "aspect_ratio": "widescreen_16_9",
    },
    {
        "title": "Food still life",
        "prompt": "Rustic table with fresh croissants, berries and coffee, morning light, top-down food photography",
        "aspect_ratio": "social_post_4_5",
    },
]


async def seed_prompt_suggestions(db: AsyncSession) -> int:
    """Insert the built-in catalog into an empty table. Returns inserted row count."""
    result = await db.execute(select(func.count(PromptSuggestion.id)))
    if int(result.scalar() or 0) > 0:
        return 0

    for index, item in enumerate(DEFAULT_PROMPT_SUGGESTIONS):
        db.add(
            PromptSuggestion(
                title=item["title"],
                prompt=item["prompt"],
                aspect_ratio=item["aspect_ratio"],
                sort_order=index,
            )
        )
    await db.commit()
    return len(DEFAULT_PROMPT_SUGGESTIONS)
