"""
Knowledge Store - Base de conocimiento por agente con búsqueda semántica.

Este módulo:
1. Agrega items calculando su embedding (title + "\\n" + content) una sola vez
2. Re-embebe cuando cambia el título o el contenido
3. Busca los top-K items activos del agente por similitud coseno
4. Importa documentos en bloque (chunking por secciones)

Un item nunca se guarda con embedding nulo: si el provider falla,
se propaga EmbeddingUnavailable y no se persiste nada.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from agent.db_service import DBService
from agent.errors import AgentNotFound, EmbeddingUnavailable, KnowledgeItemNotFound
from rag.embeddings import EmbeddingProvider
from rag.ingest.chunker import chunk_document
from rag.query.cache import TTLCache
from rag.query.similarity import rank_by_similarity

logger = logging.getLogger(__name__)


def embedding_text(title: str, content: str) -> str:
    """Texto que se embebe para un item."""
    return f"{title}\n{content}"


class KnowledgeStore:
    """Insert + top-K por similitud sobre los items de cada agente."""

    def __init__(
        self,
        db: DBService,
        embedder: EmbeddingProvider,
        cache: Optional[TTLCache] = None,
    ):
        """
        Args:
            db: Servicio de persistencia
            embedder: Provider de embeddings
            cache: Cache opcional para embeddings de queries
        """
        self._db = db
        self._embedder = embedder
        self._cache = cache

    async def _embed_query(self, text: str) -> List[float]:
        key = ("query", getattr(self._embedder, "model_name", ""), text)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        vector = await self._embedder.embed(text)

        if self._cache is not None:
            self._cache.set(key, vector)
        return vector

    async def add(
        self,
        agent_id: int,
        title: str,
        content: str,
        category: str = "general",
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict:
        """
        Agrega un item a la base de conocimiento del agente.

        Raises:
            AgentNotFound: si el agente no existe
            EmbeddingUnavailable: si falla el embedding (el item se rechaza)
        """
        agent = await asyncio.to_thread(self._db.get_agent, agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)

        embedding = await self._embedder.embed(embedding_text(title, content))

        item = await asyncio.to_thread(
            self._db.insert_knowledge_item,
            agent_id,
            title,
            content,
            category,
            list(tags or []),
            embedding,
            getattr(self._embedder, "model_name", None),
            metadata or {},
        )
        logger.info(f"[agent {agent_id}] knowledge item #{item['id']} agregado: {title[:40]}")
        return item

    async def update(self, item_id: int, **changes: Any) -> Dict:
        """
        Actualiza un item. Si cambian title o content se recalcula el embedding;
        si ese embedding falla, el item queda como estaba.
        """
        item = await asyncio.to_thread(self._db.get_knowledge_item, item_id)
        if item is None:
            raise KnowledgeItemNotFound(item_id)

        fields = {k: v for k, v in changes.items() if v is not None}
        title = fields.get("title", item["title"])
        content = fields.get("content", item["content"])

        if title != item["title"] or content != item["content"]:
            fields["embedding"] = await self._embedder.embed(embedding_text(title, content))
            fields["embedding_model"] = getattr(self._embedder, "model_name", None)

        if not fields:
            return item

        return await asyncio.to_thread(self._db.update_knowledge_item, item_id, **fields)

    async def deactivate(self, item_id: int) -> Dict:
        return await self.update(item_id, is_active=False)

    async def list_items(self, agent_id: int) -> List[Dict]:
        return await asyncio.to_thread(self._db.list_knowledge_items, agent_id)

    async def search(self, agent_id: int, query_text: str, limit: int = 5) -> List[Dict]:
        """
        Recupera los items activos del agente más similares a la query.

        Returns:
            Items ordenados por 'similarity' descendente (máximo limit).
            Lista vacía si el agente no tiene conocimiento cargado.
        """
        if limit <= 0:
            return []

        items = await asyncio.to_thread(self._db.get_active_knowledge_items, agent_id)
        if not items:
            return []

        query_embedding = await self._embed_query(query_text)

        # Invariante: nunca items inactivos ni de otro agente
        candidates = [
            i for i in items if i["agent_id"] == agent_id and i["is_active"]
        ]
        results = rank_by_similarity(query_embedding, candidates, limit)

        logger.info(
            f"[agent {agent_id}] knowledge search: {len(candidates)} candidatos → {len(results)}"
        )
        return results

    async def import_documents(
        self,
        agent_id: int,
        documents: List[Dict[str, Any]],
        chunk_size: int = 800,
        overlap: int = 100,
    ) -> Dict[str, List]:
        """
        Importa documentos en bloque: cada chunk se agrega como un item.

        Args:
            documents: Lista de {title, content, category?, tags?}

        Returns:
            {"imported": [items], "failed": [{"title", "section", "error"}]}
        """
        imported: List[Dict] = []
        failed: List[Dict] = []

        for document in documents:
            chunks = chunk_document(
                document["content"],
                source=document["title"],
                chunk_size=chunk_size,
                overlap=overlap,
            )
            for chunk in chunks:
                section = chunk["metadata"]["section"]
                title = document["title"] if section == document["title"] else f"{document['title']} - {section}"
                try:
                    item = await self.add(
                        agent_id,
                        title=title,
                        content=chunk["text"],
                        category=document.get("category") or "general",
                        tags=document.get("tags") or [],
                        metadata=chunk["metadata"],
                    )
                    imported.append(item)
                except EmbeddingUnavailable as e:
                    logger.warning(f"[agent {agent_id}] chunk rechazado ({title}): {e}")
                    failed.append({"title": title, "section": section, "error": str(e)})

        logger.info(
            f"[agent {agent_id}] import: {len(imported)} items, {len(failed)} fallidos"
        )
        return {"imported": imported, "failed": failed}
