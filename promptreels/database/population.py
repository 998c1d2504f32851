import math
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Scores are similarity values; cosine similarity lives in [-1, 1].
MIN_SCORE = -1.0
MAX_SCORE = 1.0

SEED_WEIGHT = 1.0


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp_score(score: Any) -> float:
    """Coerce a raw score into the bounded range, mapping NaN/inf to 0."""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return max(MIN_SCORE, min(MAX_SCORE, value))


@dataclass(frozen=True)
class PerformanceSample:
    """One scored evaluation of a template. Never mutated once recorded."""

    score: float
    timestamp: str = field(default_factory=utc_timestamp)
    sample_reference: str = ""

    def __post_init__(self):
        object.__setattr__(self, "score", clamp_score(self.score))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceSample":
        return cls(
            score=data.get("score", 0.0),
            timestamp=data.get("timestamp") or utc_timestamp(),
            sample_reference=data.get("sample_reference") or "",
        )


@dataclass
class PromptTemplate:
    """A unit of optimization: instruction text plus performance metadata."""

    id: str
    name: str
    text: str
    weight: float = 0.0
    generation: int = 0
    parents: List[str] = field(default_factory=list)
    performance_history: List[PerformanceSample] = field(default_factory=list)
    mutation_type: str = "seed"  # "seed" / "crossover" / "mutation"
    created_at: float = field(default_factory=time.time)

    def record(self, sample: PerformanceSample) -> None:
        """Append a performance sample (history is append-only)."""
        self.performance_history.append(sample)

    @property
    def average_score(self) -> Optional[float]:
        if not self.performance_history:
            return None
        scores = [s.score for s in self.performance_history]
        return sum(scores) / len(scores)

    @property
    def latest_score(self) -> Optional[float]:
        if not self.performance_history:
            return None
        return self.performance_history[-1].score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "text": self.text,
            "weight": self.weight,
            "generation": self.generation,
            "parents": list(self.parents),
            "performance_history": [s.to_dict() for s in self.performance_history],
            "mutation_type": self.mutation_type,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptTemplate":
        history = data.get("performance_history")
        if not isinstance(history, list):
            history = []
        parents = data.get("parents")
        if not isinstance(parents, list):
            parents = []
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            text=data.get("text") or "",
            weight=float(data.get("weight") or 0.0),
            generation=int(data.get("generation") or 0),
            parents=[str(p) for p in parents],
            performance_history=[PerformanceSample.from_dict(s) for s in history],
            mutation_type=data.get("mutation_type") or "seed",
            created_at=float(data.get("created_at") or time.time()),
        )


def select_best_id(templates: List[PromptTemplate]) -> Optional[str]:
    """Id of the maximal-weight template; ties go to the first one found."""
    best: Optional[PromptTemplate] = None
    for template in templates:
        if best is None or template.weight > best.weight:
            best = template
    return best.id if best is not None else None


@dataclass
class Population:
    """The full template set, the current best pointer and the domain list."""

    templates: List[PromptTemplate] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)
    best_id: Optional[str] = None
    retired_ids: List[str] = field(default_factory=list)
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        seen = set()
        for template in self.templates:
            if template.id in seen:
                raise ValueError(f"Duplicate template id in population: {template.id}")
            seen.add(template.id)

    def __len__(self) -> int:
        return len(self.templates)

    @property
    def ids(self) -> List[str]:
        return [t.id for t in self.templates]

    @property
    def max_generation(self) -> int:
        return max((t.generation for t in self.templates), default=0)

    def get(self, template_id: str) -> Optional[PromptTemplate]:
        for template in self.templates:
            if template.id == template_id:
                return template
        return None

    @property
    def best(self) -> Optional[PromptTemplate]:
        return self.get(self.best_id) if self.best_id else None

    def is_known_id(self, template_id: str) -> bool:
        return template_id in self.ids or template_id in self.retired_ids

    def add(self, template: PromptTemplate) -> None:
        if self.is_known_id(template.id):
            raise ValueError(f"Template id already used: {template.id}")
        self.templates.append(template)

    def remove(self, template_id: str) -> PromptTemplate:
        """Detach a template and retire its id so it is never reused."""
        for idx, template in enumerate(self.templates):
            if template.id == template_id:
                self.retired_ids.append(template_id)
                return self.templates.pop(idx)
        raise KeyError(template_id)

    def recompute_best(self) -> Optional[str]:
        self.best_id = select_best_id(self.templates)
        return self.best_id

    def ranked(self) -> List[PromptTemplate]:
        """Templates sorted by weight descending (stable on insertion order)."""
        return sorted(self.templates, key=lambda t: t.weight, reverse=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "templates": [t.to_dict() for t in self.templates],
            "domains": list(self.domains),
            "best_id": self.best_id,
            "retired_ids": list(self.retired_ids),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Population":
        templates = [PromptTemplate.from_dict(t) for t in data.get("templates") or []]
        population = cls(
            templates=templates,
            domains=[str(d) for d in data.get("domains") or []],
            best_id=data.get("best_id"),
            retired_ids=[str(i) for i in data.get("retired_ids") or []],
            updated_at=float(data.get("updated_at") or time.time()),
        )
        # Stored pointers are not trusted; the invariant is re-established on load.
        population.recompute_best()
        return population
