"""
Similarity - Similitud coseno y ranking de items de conocimiento.

cos(a, b) = dot(a, b) / (‖a‖·‖b‖)

- 0.0 si alguno de los vectores tiene magnitud cero
- 0.0 si las dimensiones no coinciden
- Resultado acotado a [-1, 1] (el redondeo de punto flotante puede pasarse)
"""

import logging
from typing import Dict, List, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Similitud coseno entre dos vectores."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    if va.ndim != 1 or vb.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


def rank_by_similarity(
    query_embedding: Sequence[float], items: List[Dict], limit: int
) -> List[Dict]:
    """
    Ordena items por similitud descendente con la query.

    Los items cuyo embedding tiene otra dimensionalidad (embedding viejo
    de otra versión del modelo) se excluyen del ranking. El sort es
    estable: a igual score gana el orden de inserción.

    Args:
        query_embedding: Vector de la query
        items: Items con clave 'embedding'
        limit: Máximo de resultados

    Returns:
        Copias de los items con 'similarity' agregado, truncadas a limit
    """
    if limit <= 0:
        return []

    dimension = len(query_embedding)
    scored = []
    stale = 0
    for item in items:
        embedding = item.get("embedding") or []
        if len(embedding) != dimension:
            stale += 1
            continue
        ranked = dict(item)
        ranked["similarity"] = cosine_similarity(query_embedding, embedding)
        scored.append(ranked)

    if stale:
        logger.warning(f"{stale} items excluidos por dimensionalidad distinta a {dimension}")

    scored.sort(key=lambda x: x["similarity"], reverse=True)
    return scored[:limit]
