"""Cosine-similarity matching of a query embedding against the face gallery."""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from .config import RECOGNITION_THRESHOLD
from .database import GalleryEntry
from .logger import setup_logger

logger = setup_logger("matcher")


@dataclass(frozen=True)
class NoMatch:
    best_similarity: Optional[float] = None
    matched: bool = False


@dataclass(frozen=True)
class Matched:
    student_id: str
    display_name: str
    similarity: float
    matched: bool = True


MatchResult = Union[NoMatch, Matched]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Return dot(a, b) / (|a| * |b|).

    Vectors of different length raise ``ValueError``. A zero-norm vector has no
    direction, so its similarity to anything is defined as 0.0.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Embedding dimensions differ: {a.size} != {b.size}")

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def _has_direction(vector: np.ndarray) -> bool:
    return float(np.linalg.norm(np.asarray(vector, dtype=np.float64))) > 0.0


def match(
    query: np.ndarray,
    gallery: Sequence[GalleryEntry],
    threshold: float = RECOGNITION_THRESHOLD,
) -> MatchResult:
    """Pick the gallery entry most similar to ``query``.

    A candidate replaces the current best only when its similarity is strictly
    greater than the best so far and strictly greater than ``threshold``, so on
    exact ties the earlier entry wins. Entries whose dimension differs from the
    query are logged and skipped. ``NoMatch.best_similarity`` is the highest
    score seen, or None when no entry could be scored.
    """
    best: Matched | None = None
    best_seen: Optional[float] = None
    if not _has_direction(query):
        return NoMatch(best_similarity=best_seen)

    for entry in gallery:
        try:
            similarity = cosine_similarity(query, entry.embedding)
        except ValueError as exc:
            logger.warning("Skipping gallery entry %s: %s", entry.student_id, exc)
            continue

        if not _has_direction(entry.embedding):
            # Zero vectors score 0.0 but are never selectable, even below-zero thresholds.
            continue

        best_seen = similarity if best_seen is None else max(best_seen, similarity)
        current = best.similarity if best is not None else float("-inf")
        if similarity > current and similarity > threshold:
            best = Matched(
                student_id=entry.student_id,
                display_name=entry.display_name,
                similarity=similarity,
            )

    if best is None:
        return NoMatch(best_similarity=best_seen)
    return best
