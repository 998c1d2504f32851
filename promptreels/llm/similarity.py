import hashlib
import re

import numpy as np

EMBEDDING_DIM = 512

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall((text or "").lower())


def hashed_embedding(text: str, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Deterministic bag-of-words embedding using feature hashing."""
    vec = np.zeros(dim, dtype=np.float64)
    for token in tokenize(text):
        digest = hashlib.md5(token.encode("utf-8")).digest()
        vec[int.from_bytes(digest[:4], "little") % dim] += 1.0
    return vec


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def text_similarity(text_a: str, text_b: str) -> float:
    """Similarity of two texts in [0, 1]; empty text scores 0."""
    score = cosine_similarity(hashed_embedding(text_a), hashed_embedding(text_b))
    return max(0.0, min(1.0, score))
