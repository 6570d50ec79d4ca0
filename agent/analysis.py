"""
Analysis — Revisión de conversaciones pasadas para mejorar el entrenamiento.

Para cada intercambio {input, response, feedback?}:
1. Puntúa la consistencia de la respuesta con el brand voice del agente
2. Si el feedback fue positivo, lo propone como nuevo ejemplo de entrenamiento

Score de consistencia (acotado a [0, 1]):
    0.5 base
    +0.3 si aparece alguna keyword del tono configurado
    +0.2 si aparece alguna frase de "Always"
    -0.4 si aparece alguna frase de "Never"
"""

import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

TONE_KEYWORDS = {
    "professional": ["please", "thank you", "appreciate", "assist"],
    "friendly": ["happy", "glad", "excited", "wonderful"],
    "casual": ["hey", "cool", "awesome", "no problem"],
    "formal": ["kindly", "respectfully", "accordingly", "furthermore"],
}

# Debajo de este score la respuesta se reporta como sugerencia de mejora
LOW_CONSISTENCY = 0.5


def brand_voice_consistency(response: str, brand_voice: Dict) -> float:
    text = (response or "").lower()
    score = 0.5

    keywords = TONE_KEYWORDS.get((brand_voice.get("tone") or "").lower(), [])
    if any(k in text for k in keywords):
        score += 0.3

    donts = [d.lower() for d in brand_voice.get("donts_list") or [] if d]
    if any(d in text for d in donts):
        score -= 0.4

    dos = [d.lower() for d in brand_voice.get("dos_list") or [] if d]
    if any(d in text for d in dos):
        score += 0.2

    return max(0.0, min(1.0, score))


def analyze_conversations(agent: Dict, conversations: List[Dict]) -> Dict:
    """
    Analiza una tanda de conversaciones del agente.

    Args:
        agent: Agente (se usa custom_training.brand_voice si existe)
        conversations: Lista de {input, response, feedback?}

    Returns:
        Dict con total_conversations, brand_voice_consistency,
        response_quality, new_training_candidates, improvement_suggestions
    """
    brand_voice = (agent.get("custom_training") or {}).get("brand_voice")
    total = len(conversations)

    consistency_sum = 0.0
    candidates: List[Dict] = []
    suggestions: List[str] = []

    for index, conv in enumerate(conversations, 1):
        if brand_voice:
            score = brand_voice_consistency(conv.get("response", ""), brand_voice)
            consistency_sum += score
            if score < LOW_CONSISTENCY:
                suggestions.append(
                    f"Conversation {index}: response drifts from the configured brand voice"
                )

        if conv.get("feedback") == "positive":
            candidates.append(
                {
                    "input": conv.get("input", ""),
                    "expected_output": conv.get("response", ""),
                    "category": "successful_interaction",
                    "weight": 1,
                }
            )

    analysis = {
        "total_conversations": total,
        "brand_voice_consistency": consistency_sum / total if total else 0.0,
        "response_quality": len(candidates) / total if total else 0.0,
        "new_training_candidates": candidates,
        "improvement_suggestions": suggestions,
    }

    logger.info(
        f"[agent {agent.get('id')}] análisis: {total} conversaciones, "
        f"{len(candidates)} candidatos"
    )
    return analysis
