"""
Columnar sampler inputs.

The samplers never see text. They get four integer columns per token plus,
per toponym word id, either the regions a gazetteer judged plausible
(``ToponymRegionFilter``) or the candidate coordinates
(``CoordinateLexicon``). Both per-word tables are stored as CSR rows
(``offsets[w]:offsets[w + 1]``) so every row carries its own length.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError
from .spherical import latlon_to_xyz

logger = logging.getLogger(__name__)


@dataclass
class TokenArrays:
    """One row per token: word id, document id, toponym flag, stopword flag."""

    word: np.ndarray
    doc: np.ndarray
    is_toponym: np.ndarray
    is_stopword: np.ndarray
    vocabulary_size: int
    document_count: int

    @property
    def N(self) -> int:
        return int(self.word.shape[0])

    @property
    def W(self) -> int:
        return self.vocabulary_size

    @property
    def D(self) -> int:
        return self.document_count

    @classmethod
    def from_columns(
        cls,
        word: Sequence[int],
        doc: Sequence[int],
        is_toponym: Sequence[int],
        is_stopword: Optional[Sequence[int]] = None,
        *,
        vocabulary_size: Optional[int] = None,
        document_count: Optional[int] = None,
    ) -> "TokenArrays":
        word = np.ascontiguousarray(word, dtype=np.int64)
        doc = np.ascontiguousarray(doc, dtype=np.int64)
        is_toponym = np.ascontiguousarray(is_toponym, dtype=np.bool_)
        if is_stopword is None:
            is_stopword = np.zeros(word.shape[0], dtype=np.bool_)
        else:
            is_stopword = np.ascontiguousarray(is_stopword, dtype=np.bool_)

        n = word.shape[0]
        for name, col in (("doc", doc), ("is_toponym", is_toponym), ("is_stopword", is_stopword)):
            if col.shape != (n,):
                raise ConfigurationError(
                    f"Column '{name}' has shape {col.shape}, expected ({n},)"
                )
        if n and (word.min() < 0 or doc.min() < 0):
            raise ConfigurationError("Word and document ids must be non-negative")

        content = ~is_stopword
        # Stopword ids do not count towards the vocabulary.
        if vocabulary_size is None:
            vocabulary_size = int(word[content].max()) + 1 if content.any() else 0
        if document_count is None:
            document_count = int(doc.max()) + 1 if n else 0
        if content.any() and int(word[content].max()) >= vocabulary_size:
            raise ConfigurationError(
                f"Word id {int(word[content].max())} outside vocabulary of size {vocabulary_size}"
            )
        if n and int(doc.max()) >= document_count:
            raise ConfigurationError(
                f"Document id {int(doc.max())} outside document count {document_count}"
            )

        return cls(
            word=word,
            doc=doc,
            is_toponym=is_toponym,
            is_stopword=is_stopword,
            vocabulary_size=int(vocabulary_size),
            document_count=int(document_count),
        )

    @classmethod
    def from_records(cls, records: np.ndarray, **kwargs) -> "TokenArrays":
        """Build from an (N, 3) or (N, 4) integer table."""
        records = np.asarray(records, dtype=np.int64)
        if records.ndim != 2 or records.shape[1] not in (3, 4):
            raise ConfigurationError(
                f"Token records must have 3 or 4 columns, got shape {records.shape}"
            )
        stop = records[:, 3] if records.shape[1] == 4 else None
        return cls.from_columns(records[:, 0], records[:, 1], records[:, 2], stop, **kwargs)

    def sampled_toponym_words(self) -> np.ndarray:
        """Distinct word ids of toponym tokens that are not stopwords."""
        mask = self.is_toponym & ~self.is_stopword
        return np.unique(self.word[mask])


def _build_offsets(row_lengths: np.ndarray) -> np.ndarray:
    offsets = np.zeros(row_lengths.shape[0] + 1, dtype=np.int64)
    np.cumsum(row_lengths, out=offsets[1:])
    return offsets


@dataclass
class ToponymRegionFilter:
    """For each word id, the sorted region ids compatible with that place name."""

    offsets: np.ndarray
    regions: np.ndarray
    num_regions: int

    @classmethod
    def from_lists(
        cls,
        mapping: Mapping[int, Iterable[int]],
        vocabulary_size: int,
        num_regions: Optional[int] = None,
    ) -> "ToponymRegionFilter":
        rows = [[] for _ in range(vocabulary_size)]
        max_region = -1
        for word, region_ids in mapping.items():
            word = int(word)
            if not 0 <= word < vocabulary_size:
                raise ConfigurationError(
                    f"Toponym id {word} outside vocabulary of size {vocabulary_size}"
                )
            row = sorted({int(r) for r in region_ids})
            if row and row[0] < 0:
                raise ConfigurationError(f"Negative region id in filter for toponym {word}")
            if row:
                max_region = max(max_region, row[-1])
            rows[word] = row

        if num_regions is None:
            num_regions = max_region + 1
        if max_region >= num_regions:
            raise ConfigurationError(
                f"Filter references region {max_region} but only {num_regions} regions exist"
            )

        lengths = np.array([len(r) for r in rows], dtype=np.int64)
        regions = np.array([r for row in rows for r in row], dtype=np.int64)
        return cls(offsets=_build_offsets(lengths), regions=regions, num_regions=int(num_regions))

    def candidates(self, word: int) -> np.ndarray:
        return self.regions[self.offsets[word] : self.offsets[word + 1]]

    def count(self, word: int) -> int:
        return int(self.offsets[word + 1] - self.offsets[word])


@dataclass
class CoordinateLexicon:
    """For each word id, its ordered candidate coordinates (degrees and unit vectors)."""

    offsets: np.ndarray
    latlon: np.ndarray
    xyz: np.ndarray

    @classmethod
    def from_lists(
        cls,
        mapping: Mapping[int, Iterable[Tuple[float, float]]],
        vocabulary_size: int,
    ) -> "CoordinateLexicon":
        rows = [[] for _ in range(vocabulary_size)]
        for word, coords in mapping.items():
            word = int(word)
            if not 0 <= word < vocabulary_size:
                raise ConfigurationError(
                    f"Toponym id {word} outside vocabulary of size {vocabulary_size}"
                )
            rows[word] = [(float(lat), float(lon)) for lat, lon in coords]

        lengths = np.array([len(r) for r in rows], dtype=np.int64)
        flat = [c for row in rows for c in row]
        latlon = np.array(flat, dtype=np.float64).reshape(-1, 2)
        return cls(
            offsets=_build_offsets(lengths),
            latlon=latlon,
            xyz=np.ascontiguousarray(latlon_to_xyz(latlon)),
        )

    @property
    def total(self) -> int:
        return int(self.latlon.shape[0])

    @property
    def max_candidates(self) -> int:
        if self.offsets.shape[0] < 2:
            return 0
        return int(np.diff(self.offsets).max())

    def candidates(self, word: int) -> np.ndarray:
        return self.latlon[self.offsets[word] : self.offsets[word + 1]]

    def count(self, word: int) -> int:
        return int(self.offsets[word + 1] - self.offsets[word])


def require_rows(tokens: TokenArrays, offsets: np.ndarray, what: str) -> None:
    """Fail if a sampled toponym word has an empty row in a per-word table."""
    words = tokens.sampled_toponym_words()
    if words.size == 0:
        return
    if words.max() >= offsets.shape[0] - 1:
        raise ConfigurationError(
            f"{what} covers {offsets.shape[0] - 1} word ids but toponym {int(words.max())} occurs"
        )
    lengths = offsets[words + 1] - offsets[words]
    missing = words[lengths == 0]
    if missing.size:
        shown = ", ".join(str(int(w)) for w in missing[:5])
        raise ConfigurationError(
            f"{missing.size} toponym word(s) have no {what} entries (e.g. {shown})"
        )


###############################################################################
# Text readers
###############################################################################


def read_token_arrays(path: str | os.PathLike[str], **kwargs) -> TokenArrays:
    """Read whitespace-separated ``word doc toponym [stopword]`` rows."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing token array file: {path}")
    records = np.loadtxt(path, dtype=np.int64, ndmin=2)
    tokens = TokenArrays.from_records(records, **kwargs)
    logger.info(
        "Read %d tokens (%d words, %d documents) from %s",
        tokens.N, tokens.W, tokens.D, path,
    )
    return tokens


def _read_rows(path: Path) -> list[list[str]]:
    if not path.exists():
        raise FileNotFoundError(f"Missing input file: {path}")
    rows = []
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            parts = line.split()
            if parts and not parts[0].startswith("#"):
                rows.append(parts)
    return rows


def read_region_filter(
    path: str | os.PathLike[str], vocabulary_size: int, num_regions: Optional[int] = None
) -> ToponymRegionFilter:
    """Read ``word_id region_id ...`` rows."""
    mapping = {}
    for parts in _read_rows(Path(path)):
        mapping[int(parts[0])] = [int(p) for p in parts[1:]]
    return ToponymRegionFilter.from_lists(mapping, vocabulary_size, num_regions)


def read_coordinates(path: str | os.PathLike[str], vocabulary_size: int) -> CoordinateLexicon:
    """Read ``word_id lat lon [lat lon ...]`` rows."""
    mapping = {}
    for parts in _read_rows(Path(path)):
        values = [float(p) for p in parts[1:]]
        if len(values) % 2:
            raise ValueError(f"Odd number of coordinate values for toponym {parts[0]}")
        mapping[int(parts[0])] = list(zip(values[0::2], values[1::2]))
    return CoordinateLexicon.from_lists(mapping, vocabulary_size)


__all__ = [
    "TokenArrays",
    "ToponymRegionFilter",
    "CoordinateLexicon",
    "require_rows",
    "read_token_arrays",
    "read_region_filter",
    "read_coordinates",
]
