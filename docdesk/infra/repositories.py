"""
Repositories pour la gestion des données.

Ce module fournit les dépôts de documents et d'utilisateurs, avec des versions en mémoire
(dev/tests) et Redis. Les identifiants de documents sont des entiers attribués par le dépôt.
"""

import itertools
import json
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Literal

import redis

SEARCHED_FIELDS = ("title", "content", "generatedContent")
RECENT_ACTIVITY_DAYS = 7


@dataclass(frozen=True)
class DocumentQuery:
    """Filtres, tri et pagination de la liste des documents d'un utilisateur."""

    page: int = 1
    limit: int = 20
    sort_by: Literal["createdAt", "updatedAt", "title"] = "createdAt"
    order: Literal["asc", "desc"] = "desc"
    status: str | None = None
    document_type: str | None = None
    is_favorite: bool | None = None
    search: str | None = None


def query_documents(
    documents: list[dict[str, Any]], query: DocumentQuery
) -> tuple[list[dict[str, Any]], int]:
    """Filter, sort and slice `documents`; returns the page and the filtered total."""
    needle = (query.search or "").strip().lower()

    def matches(doc: dict[str, Any]) -> bool:
        if query.status and doc.get("status") != query.status:
            return False
        if query.document_type and doc.get("documentType") != query.document_type:
            return False
        if query.is_favorite is not None and bool(doc.get("isFavorite")) != query.is_favorite:
            return False
        if needle:
            return any(needle in str(doc.get(f) or "").lower() for f in SEARCHED_FIELDS)
        return True

    selected = [d for d in documents if matches(d)]
    selected.sort(
        key=lambda d: (str(d.get(query.sort_by) or ""), d.get("id") or 0),
        reverse=query.order == "desc",
    )
    start = (query.page - 1) * query.limit
    return selected[start : start + query.limit], len(selected)


def document_stats(documents: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Agrégats du tableau de bord d'un utilisateur.

    `recentActivity` couvre les sept derniers jours ayant vu au moins une création, du plus
    ancien au plus récent. Tout statut autre que `draft` compte comme `completed`.
    """
    by_type: Counter[str] = Counter()
    by_status = {"draft": 0, "completed": 0}
    per_day: Counter[str] = Counter()
    favorites = 0
    for doc in documents:
        by_type[doc.get("documentType") or ""] += 1
        by_status["draft" if doc.get("status") == "draft" else "completed"] += 1
        if doc.get("isFavorite"):
            favorites += 1
        day = str(doc.get("createdAt") or "")[:10]
        if day:
            per_day[day] += 1

    recent = sorted(per_day.items())[-RECENT_ACTIVITY_DAYS:]
    return {
        "totalDocuments": len(documents),
        "documentsByType": dict(by_type),
        "documentsByStatus": by_status,
        "recentActivity": [{"date": day, "count": count} for day, count in recent],
        "favoriteCount": favorites,
    }


class InMemoryDocumentRepo:
    """
    Dépôt de documents en mémoire (utilisé pour dev/tests).

    Stocke les enregistrements dans un dict local, non persistant.
    """

    def __init__(self):
        """Initialise une base mémoire vide."""
        self._db: dict[int, dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, record: dict[str, Any]) -> dict[str, Any]:
        """Attribue un identifiant, enregistre et renvoie le document."""
        with self._lock:
            doc_id = next(self._ids)
            stored = {**record, "id": doc_id}
            self._db[doc_id] = stored
            return dict(stored)

    def get(self, doc_id: int) -> dict[str, Any] | None:
        """Retourne un document par id, ou None s'il est absent."""
        record = self._db.get(doc_id)
        return dict(record) if record else None

    def update(self, doc_id: int, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Fusionne `changes` dans le document et renvoie la version à jour."""
        with self._lock:
            record = self._db.get(doc_id)
            if record is None:
                return None
            record.update({k: v for k, v in changes.items() if k != "id"})
            return dict(record)

    def delete(self, doc_id: int) -> bool:
        """Supprime le document; False s'il n'existait pas."""
        with self._lock:
            return self._db.pop(doc_id, None) is not None

    def list_by_user(self, user_id: str) -> list[dict[str, Any]]:
        """Documents d'un utilisateur, du plus récent au plus ancien."""
        docs = [dict(d) for d in self._db.values() if d.get("userId") == user_id]
        return sorted(docs, key=lambda d: d.get("createdAt") or "", reverse=True)

    def list_page(
        self, user_id: str, query: DocumentQuery
    ) -> tuple[list[dict[str, Any]], int]:
        """Page de documents filtrés et triés, avec le total avant pagination."""
        return query_documents(self.list_by_user(user_id), query)

    def stats(self, user_id: str) -> dict[str, Any]:
        return document_stats(self.list_by_user(user_id))


class RedisDocumentRepo:
    """Dépôt de documents adossé à Redis (clés: `document:{id}`, `document:user:{uid}`)."""

    def __init__(self, url: str):
        """Crée un client Redis à partir de l'URL fournie."""
        self.client = redis.Redis.from_url(url, decode_responses=True)
        self.seq_key = "document:seq"

    def create(self, record: dict[str, Any]) -> dict[str, Any]:
        """Attribue un id via INCR, sérialise et indexe le document par utilisateur."""
        doc_id = int(self.client.incr(self.seq_key))
        stored = {**record, "id": doc_id}
        pipe = self.client.pipeline()
        pipe.set(f"document:{doc_id}", json.dumps(stored))
        if stored.get("userId"):
            pipe.sadd(f"document:user:{stored['userId']}", doc_id)
        pipe.execute()
        return stored

    def get(self, doc_id: int) -> dict[str, Any] | None:
        """Charge et désérialise le document `document:{id}`, si présent."""
        raw = self.client.get(f"document:{doc_id}")
        return json.loads(raw) if raw else None

    def update(self, doc_id: int, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Lecture-fusion-écriture du document (dernier écrivain gagnant)."""
        record = self.get(doc_id)
        if record is None:
            return None
        record.update({k: v for k, v in changes.items() if k != "id"})
        self.client.set(f"document:{doc_id}", json.dumps(record))
        return record

    def delete(self, doc_id: int) -> bool:
        """Supprime le document et son entrée d'index."""
        record = self.get(doc_id)
        if record is None:
            return False
        pipe = self.client.pipeline()
        pipe.delete(f"document:{doc_id}")
        if record.get("userId"):
            pipe.srem(f"document:user:{record['userId']}", doc_id)
        pipe.execute()
        return True

    def list_by_user(self, user_id: str) -> list[dict[str, Any]]:
        """Documents d'un utilisateur via l'index Redis, du plus récent au plus ancien."""
        ids = self.client.smembers(f"document:user:{user_id}") or []
        docs = [d for d in (self.get(int(i)) for i in ids) if d]
        return sorted(docs, key=lambda d: d.get("createdAt") or "", reverse=True)

    def list_page(
        self, user_id: str, query: DocumentQuery
    ) -> tuple[list[dict[str, Any]], int]:
        """Filtrage en mémoire après chargement de l'index utilisateur."""
        return query_documents(self.list_by_user(user_id), query)

    def stats(self, user_id: str) -> dict[str, Any]:
        return document_stats(self.list_by_user(user_id))


class InMemoryUserRepo:
    """Dépôt utilisateurs en mémoire (email indexée par scan simple)."""

    def __init__(self):
        """Initialise une base mémoire vide."""
        self._db: dict[str, dict[str, Any]] = {}

    def get_by_email(self, email: str) -> dict[str, Any] | None:
        """Recherche un utilisateur par email."""
        return next((u for u in self._db.values() if u.get("email") == email), None)

    def get(self, user_id: str) -> dict[str, Any] | None:
        """Recherche un utilisateur par id."""
        return self._db.get(user_id)

    def save(self, user: dict[str, Any]) -> dict[str, Any]:
        """Sauvegarde un utilisateur."""
        self._db[user["id"]] = user
        return user


class RedisUserRepo:
    """Dépôt utilisateurs via Redis avec index email->id (hash)."""

    def __init__(self, url: str):
        """Crée un client Redis à partir de l'URL fournie."""
        self.client = redis.Redis.from_url(url, decode_responses=True)
        self.idx_key = "user:idx:email"

    def get_by_email(self, email: str) -> dict[str, Any] | None:
        """Recherche un utilisateur par email via l'index Redis."""
        user_id = self.client.hget(self.idx_key, email)
        if not user_id:
            return None
        return self.get(user_id)

    def get(self, user_id: str) -> dict[str, Any] | None:
        """Charge un utilisateur par id."""
        raw = self.client.get(f"user:{user_id}")
        return json.loads(raw) if raw else None

    def save(self, user: dict[str, Any]) -> dict[str, Any]:
        """Sauvegarde un utilisateur et met à jour l'index email."""
        key = f"user:{user['id']}"
        pipe = self.client.pipeline()
        pipe.set(key, json.dumps(user))
        pipe.hset(self.idx_key, user["email"], user["id"])
        pipe.execute()
        return user
