"""Sample sources feeding the aggregator: one (media, reference) per domain."""

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

REFERENCE_MAX_CHARS = 500
USABLE_STATUSES = ("described", "rated")


@dataclass(frozen=True)
class Sample:
    media_path: str
    reference_text: Optional[str] = None
    reference: str = ""  # Where the sample came from, kept in history


class SampleSource(Protocol):
    def sample(self, domain: str) -> Optional[Sample]: ...


def draw_samples(source: SampleSource, domains: Sequence[str]) -> Dict[str, Sample]:
    """One independently drawn sample per domain; domains without one are left out."""
    samples: Dict[str, Sample] = {}
    for domain in domains:
        sample = source.sample(domain)
        if sample is not None:
            samples[domain] = sample
    return samples


class StaticSampleSource:
    """Fixed domain -> sample mapping, with an optional ``default`` entry."""

    def __init__(self, samples: Mapping[str, Sample]):
        self.samples = dict(samples)

    def sample(self, domain: str) -> Optional[Sample]:
        return self.samples.get(domain) or self.samples.get("default")


class ArticleSampleSource:
    """
    Draws a random frame from described articles listed in a JSON manifest.

    Manifest layout: a list (or ``{"articles": [...]}``) of records with
    ``article_id``, ``status``, optional ``domain``, ``text`` /
    ``description`` / ``title`` and ``scenes: [{"frames": [{"path": ...}]}]``.
    Articles tagged with a domain are preferred for that domain; untagged
    articles serve every domain.
    """

    def __init__(self, manifest_path: str | Path, rng: Optional[random.Random] = None):
        self.manifest_path = Path(manifest_path)
        self.rng = rng or random.Random()

    def _load_articles(self) -> List[Dict[str, Any]]:
        if not self.manifest_path.exists():
            logger.warning(f"Article manifest not found: {self.manifest_path}")
            return []
        with self.manifest_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("articles", [])
        return [a for a in data if isinstance(a, dict) and a.get("status") in USABLE_STATUSES]

    @staticmethod
    def _reference_text(article: Dict[str, Any]) -> str:
        text = article.get("text") or article.get("description") or article.get("title") or ""
        return text[:REFERENCE_MAX_CHARS]

    def sample(self, domain: str) -> Optional[Sample]:
        articles = self._load_articles()
        tagged = [a for a in articles if a.get("domain") == domain]
        candidates = tagged or [a for a in articles if not a.get("domain")]
        if not candidates:
            logger.info(f"No described articles available for domain '{domain}'")
            return None

        article = self.rng.choice(candidates)
        scenes = [s for s in article.get("scenes") or [] if s.get("frames")]
        if not scenes:
            logger.info(f"Article {article.get('article_id')} has no frames, skipping '{domain}'")
            return None
        scene_idx = self.rng.randrange(len(scenes))
        frames = scenes[scene_idx]["frames"]
        frame_idx = self.rng.randrange(len(frames))
        frame = frames[frame_idx]
        path = frame.get("path") if isinstance(frame, dict) else str(frame)
        if not path:
            return None

        reference = self._reference_text(article) or None
        logger.debug(
            f"{domain}: article {article.get('article_id')}, scene {scene_idx}, frame {frame_idx}"
        )
        return Sample(
            media_path=path,
            reference_text=reference,
            reference=f"{article.get('article_id')}:{scene_idx}:{frame_idx}",
        )
