"""
Example Matcher - Ranking léxico de ejemplos de entrenamiento.

Para cada ejemplo:
    similarity = |tokens(mensaje) ∩ tokens(input)| / max(|tokens(mensaje)|, |tokens(input)|)
    similarity *= weight

Se ordena descendente, se descarta todo lo que quede en <= 0.1 (ruido)
y se devuelven los top `limit`. No usa embeddings.
"""

import logging
from typing import Dict, List, Sequence

logger = logging.getLogger(__name__)

# Scores por debajo (o igual) a este valor se consideran ruido
NOISE_THRESHOLD = 0.1


def tokenize(text: str) -> set:
    """Tokens únicos en minúsculas, separados por whitespace."""
    return set((text or "").lower().split())


def lexical_overlap(message_tokens: set, input_tokens: set) -> float:
    longest = max(len(message_tokens), len(input_tokens))
    if longest == 0:
        return 0.0
    return len(message_tokens & input_tokens) / longest


def rank(examples: Sequence[Dict], user_message: str, limit: int = 3) -> List[Dict]:
    """
    Rankea ejemplos contra el mensaje del usuario.

    Args:
        examples: Ejemplos con 'input', 'expected_output' y 'weight' (default 1)
        user_message: Mensaje entrante
        limit: Máximo de resultados

    Returns:
        Copias de los ejemplos con 'similarity', ordenadas descendente.
        A igual score se respeta el orden original.
    """
    if limit <= 0 or not examples:
        return []

    message_tokens = tokenize(user_message)

    scored = []
    for example in examples:
        weight = example.get("weight") or 1
        score = lexical_overlap(message_tokens, tokenize(example.get("input", ""))) * weight
        ranked = dict(example)
        ranked["similarity"] = score
        scored.append(ranked)

    scored.sort(key=lambda x: x["similarity"], reverse=True)
    matches = [e for e in scored if e["similarity"] > NOISE_THRESHOLD][:limit]

    logger.debug(f"Example matcher: {len(examples)} ejemplos → {len(matches)} matches")
    return matches
