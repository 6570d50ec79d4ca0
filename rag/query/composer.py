"""
Prompt Composer - Arma el system prompt de un agente entrenado.

Orden fijo de secciones (se omiten las vacías, nunca se reordenan):
1. System prompt base del agente
2. BRAND VOICE & COMMUNICATION STYLE (tono, personalidad, estilo, Always, Never)
3. BUSINESS CONTEXT (industria, tamaño, audiencia, propuesta de valor, productos)
4. RELEVANT KNOWLEDGE BASE (items numerados en orden de ranking)
5. TRAINING EXAMPLES FOR REFERENCE (pares Customer/Response en orden de ranking)
6. Línea de cierre (solo si se agregó alguna sección)

Sin brand voice, sin contexto y sin hits el resultado es exactamente el
prompt base.
"""

from typing import Dict, List, Optional, Sequence

CLOSING_INSTRUCTION = (
    "Use this context to provide accurate, on-brand responses that align with "
    "the business goals and communication style. Follow the training examples "
    "as guidance for response quality and tone."
)


def _brand_voice_section(brand_voice: Optional[Dict]) -> Optional[str]:
    if not brand_voice:
        return None

    lines = []
    for label, key in (
        ("Tone", "tone"),
        ("Personality", "personality"),
        ("Communication Style", "communication_style"),
    ):
        value = (brand_voice.get(key) or "").strip()
        if value:
            lines.append(f"- {label}: {value}")

    dos = [d for d in brand_voice.get("dos_list") or [] if d]
    if dos:
        lines.append(f"- Always: {', '.join(dos)}")

    donts = [d for d in brand_voice.get("donts_list") or [] if d]
    if donts:
        lines.append(f"- Never: {', '.join(donts)}")

    if not lines:
        return None
    return "BRAND VOICE & COMMUNICATION STYLE:\n" + "\n".join(lines)


def _business_context_section(context: Optional[Dict]) -> Optional[str]:
    if not context:
        return None

    lines = []
    for label, key in (
        ("Industry", "industry"),
        ("Company Size", "company_size"),
        ("Target Audience", "target_audience"),
        ("Value Proposition", "value_proposition"),
    ):
        value = (context.get(key) or "").strip()
        if value:
            lines.append(f"- {label}: {value}")

    products = [p for p in context.get("key_products") or [] if p]
    if products:
        lines.append(f"- Key Products/Services: {', '.join(products)}")

    if not lines:
        return None
    return "BUSINESS CONTEXT:\n" + "\n".join(lines)


def _knowledge_section(hits: Sequence[Dict]) -> Optional[str]:
    if not hits:
        return None
    entries = [
        f"{i}. {hit.get('title', '')}\n{hit.get('content', '')}"
        for i, hit in enumerate(hits, 1)
    ]
    return "RELEVANT KNOWLEDGE BASE:\n" + "\n\n".join(entries)


def _training_section(hits: Sequence[Dict]) -> Optional[str]:
    if not hits:
        return None
    entries = [
        f"Example {i}:\nCustomer: {hit.get('input', '')}\n"
        f"Response: {hit.get('expected_output', '')}"
        for i, hit in enumerate(hits, 1)
    ]
    return "TRAINING EXAMPLES FOR REFERENCE:\n" + "\n\n".join(entries)


def compose(
    base_system_prompt: str,
    brand_voice: Optional[Dict] = None,
    business_context: Optional[Dict] = None,
    knowledge_hits: Optional[List[Dict]] = None,
    training_hits: Optional[List[Dict]] = None,
) -> str:
    """
    Compone el system prompt final.

    Args:
        base_system_prompt: Instrucciones base del agente
        brand_voice: {tone, personality, communication_style, dos_list, donts_list}
        business_context: {industry, company_size, target_audience,
            value_proposition, key_products}
        knowledge_hits: Items de conocimiento rankeados
        training_hits: Ejemplos rankeados

    Returns:
        System prompt con las secciones separadas por línea en blanco
    """
    sections = [
        _brand_voice_section(brand_voice),
        _business_context_section(business_context),
        _knowledge_section(knowledge_hits or []),
        _training_section(training_hits or []),
    ]
    sections = [s for s in sections if s]

    if not sections:
        return base_system_prompt

    return "\n\n".join([base_system_prompt, *sections, CLOSING_INSTRUCTION])
