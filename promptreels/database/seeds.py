"""Generation-0 prompt templates and default federated domains."""

from typing import List, Optional, Sequence

from .population import SEED_WEIGHT, Population, PromptTemplate

DEFAULT_DOMAINS: List[str] = ["news", "sports", "reels"]

SEED_TEMPLATES = [
    {
        "id": "baseline",
        "name": "Baseline",
        "text": "Describe what is happening in this video frame.",
    },
    {
        "id": "structured",
        "name": "Structured",
        "text": (
            "Describe this video frame in three parts: the setting, the main "
            "subjects, and the action taking place."
        ),
    },
    {
        "id": "narrative",
        "name": "Narrative",
        "text": (
            "Tell the story captured in this video frame in two or three "
            "sentences, as a reporter would for a viewer who cannot see it."
        ),
    },
    {
        "id": "technical",
        "name": "Technical",
        "text": (
            "Analyze this video frame objectively. List the visible people, "
            "objects, text overlays, camera angle and lighting."
        ),
    },
    {
        "id": "comprehensive",
        "name": "Comprehensive",
        "text": (
            "Provide a complete description of this video frame: who and what "
            "is shown, where it takes place, what is happening, and any "
            "on-screen text that gives context about the event."
        ),
    },
]

SEED_IDS = [seed["id"] for seed in SEED_TEMPLATES]


def build_seed_population(domains: Optional[Sequence[str]] = None) -> Population:
    """Fresh generation-0 population; every seed starts at the same weight."""
    templates = [
        PromptTemplate(
            id=seed["id"],
            name=seed["name"],
            text=seed["text"],
            weight=SEED_WEIGHT,
            generation=0,
            parents=[],
            mutation_type="seed",
        )
        for seed in SEED_TEMPLATES
    ]
    population = Population(
        templates=templates,
        domains=list(domains) if domains is not None else list(DEFAULT_DOMAINS),
    )
    population.recompute_best()
    return population
