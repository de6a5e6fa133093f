"""
exam_ai_core/alignment_scorer.py
-----------------------------------
AlignmentOracle: how close is a generated question to the module's
curriculum content? Max cosine similarity between the candidate's
embedding and each curriculum passage of that module, clamped to [0, 1].

Embeddings are cached in SQLite by SHA-256 of (model, text), so identical
(text, module) pairs give identical scores across runs.
"""

import os
import json
import math
import sqlite3
import hashlib
import logging
from threading import Lock
from typing import Dict, List, Mapping, Optional, Sequence

from openai import OpenAI, APIError

from exam_core.errors import OracleUnavailableError
from exam_ai_core.api_throttler import ApiThrottler, ThrottlerError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector sizes differ: {len(a)} vs {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class EmbeddingAlignmentScorer:
    name = "openai-alignment"

    def __init__(
        self,
        curriculum: Mapping[str, Sequence[str]],
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        throttler: Optional[ApiThrottler] = None,
        cache_path: Optional[str] = "embedding_cache.db",
        api_key: Optional[str] = None,
    ):
        """
        Parameters:
            curriculum: module -> curriculum passages (syllabus text, notes)
            cache_path: SQLite file for embeddings; None keeps them in memory
        """
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("❌ OPENAI_API_KEY is not configured")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model = model or os.getenv("OPENAI_EMBEDDING_MODEL", DEFAULT_MODEL)
        self.throttler = throttler or ApiThrottler(min_interval=0.5, max_retries=5, max_wait=25.0, per_model=True)
        self.curriculum = {m: [p for p in passages if p and p.strip()] for m, passages in curriculum.items()}
        self.cache_path = cache_path

        self._mem_lock = Lock()
        self._mem_cache: Dict[str, List[float]] = {}
        if cache_path:
            os.makedirs(os.path.dirname(cache_path) or ".", exist_ok=True)
            self._init_db()

    # ==============================
    # SQLite cache
    # ==============================
    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.cache_path, timeout=30)

    def _init_db(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    key TEXT PRIMARY KEY,
                    model TEXT,
                    vector TEXT NOT NULL
                );
            """)
            conn.commit()
        finally:
            conn.close()

    def _key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model}::{text}".encode()).hexdigest()

    def _get_cached(self, keys: List[str]) -> Dict[str, List[float]]:
        if not self.cache_path:
            with self._mem_lock:
                return {k: self._mem_cache[k] for k in keys if k in self._mem_cache}
        conn = self._connect()
        try:
            out = {}
            for k in keys:
                row = conn.execute("SELECT vector FROM embeddings WHERE key=?", (k,)).fetchone()
                if row:
                    out[k] = json.loads(row[0])
            return out
        finally:
            conn.close()

    def _set_cached(self, items: Dict[str, List[float]]):
        if not self.cache_path:
            with self._mem_lock:
                self._mem_cache.update(items)
            return
        conn = self._connect()
        try:
            conn.executemany(
                "INSERT OR REPLACE INTO embeddings VALUES (?, ?, ?)",
                [(k, self.model, json.dumps(v)) for k, v in items.items()],
            )
            conn.commit()
        finally:
            conn.close()

    # ==============================
    # Embeddings
    # ==============================
    def _embed(self, texts: List[str]) -> List[List[float]]:
        keys = [self._key(t) for t in texts]
        cached = self._get_cached(keys)
        missing = [(k, t) for k, t in zip(keys, texts) if k not in cached]

        if missing:
            unique = list(dict.fromkeys(missing))
            try:
                response = self.throttler.safe_openai_embeddings(
                    self.client, [t for _, t in unique], model=self.model
                )
            except ThrottlerError as e:
                logger.error(f"❌ Embedding API failed after {e.attempts} attempt(s): {e.last_exception}")
                raise OracleUnavailableError(self.name, "retries exhausted", e) from e
            except APIError as e:
                raise OracleUnavailableError(self.name, "API error", e) from e

            fresh = {k: list(d.embedding) for (k, _), d in zip(unique, response.data)}
            self._set_cached(fresh)
            cached.update(fresh)
            logger.debug(f"Embedded {len(fresh)} new text(s)")

        return [cached[k] for k in keys]

    # ==============================
    # AlignmentOracle
    # ==============================
    def score(self, text: str, module: str) -> float:
        passages = self.curriculum.get(module)
        if not passages:
            logger.warning(f"⚠️ No curriculum content for module {module!r}; score 0.")
            return 0.0
        vectors = self._embed([text, *passages])
        best = max(cosine_similarity(vectors[0], v) for v in vectors[1:])
        return max(0.0, min(1.0, best))
