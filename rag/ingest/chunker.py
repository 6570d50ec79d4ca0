"""
Chunker - Divide documentos markdown en chunks para la base de conocimiento.

Este módulo se encarga de:
1. Separar el documento en secciones según los headers (#, ##, ###)
2. Dividir cada sección en chunks con overlap para mantener contexto
3. Preservar metadata (documento fuente, sección, índice del chunk)

Lo usa KnowledgeStore.import_documents: cada chunk termina siendo un
knowledge item con su propio embedding.
"""

import re
from typing import Dict, List

# Las tablas markdown no se parten salvo que superen este tamaño
ATOMIC_BLOCK_MAX = 2048

HEADER_PATTERN = re.compile(r"^(#{1,3})\s+(.+)$")


def extract_sections(content: str, source: str) -> List[Dict]:
    """
    Extrae secciones del markdown basándose en headers (#, ##, ###).

    El texto anterior al primer header queda en una sección cuyo header
    es el nombre del documento.

    Args:
        content: Contenido markdown
        source: Nombre del documento fuente

    Returns:
        Lista de {header, level, text, source}
    """
    sections = []
    header = source
    level = 0
    buffer: List[str] = []

    def flush():
        text = "\n".join(buffer).strip()
        if text:
            sections.append(
                {"header": header, "level": level, "text": text, "source": source}
            )

    for line in content.split("\n"):
        match = HEADER_PATTERN.match(line)
        if match:
            flush()
            buffer = []
            level = len(match.group(1))
            header = match.group(2).strip()
        else:
            buffer.append(line)

    flush()
    return sections


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 100) -> List[str]:
    """
    Divide un texto en chunks con overlap usando sliding window.

    Las tablas markdown (líneas que empiezan con ``|``) se mantienen como
    unidad atómica junto con la línea que las precede.

    Args:
        text: Texto a dividir
        chunk_size: Tamaño máximo de cada chunk en caracteres
        overlap: Caracteres compartidos entre chunks consecutivos

    Returns:
        Lista de chunks de texto
    """
    if not text or not text.strip():
        return []

    if len(text) <= chunk_size:
        return [text.strip()]

    chunks: List[str] = []
    for block_text, is_atomic in _split_atomic_blocks(text):
        block_text = block_text.strip()
        if not block_text:
            continue

        if is_atomic and len(block_text) <= ATOMIC_BLOCK_MAX:
            chunks.append(block_text)
        elif is_atomic:
            chunks.extend(_sliding_window(block_text, ATOMIC_BLOCK_MAX, overlap))
        else:
            chunks.extend(_sliding_window(block_text, chunk_size, overlap))

    return chunks


def _split_atomic_blocks(text: str) -> List[tuple]:
    """Separa el texto en bloques (texto, is_atomic)."""
    blocks: List[tuple] = []
    buf: List[str] = []
    in_table = False

    for line in text.split("\n"):
        is_table_line = line.strip().startswith("|")

        if is_table_line and not in_table:
            # La línea anterior a la tabla suele ser su título
            lead = buf.pop() if buf else ""
            if buf:
                blocks.append(("\n".join(buf), False))
            buf = [lead, line] if lead else [line]
            in_table = True
        elif not is_table_line and in_table:
            blocks.append(("\n".join(buf), True))
            buf = [line]
            in_table = False
        else:
            buf.append(line)

    if buf:
        blocks.append(("\n".join(buf), in_table))

    return blocks


def _sliding_window(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Sliding window con corte en espacio/newline cercano al límite."""
    if len(text) <= chunk_size:
        return [text.strip()] if text.strip() else []

    chunks: List[str] = []
    start = 0

    while start < len(text):
        end = start + chunk_size

        if end < len(text):
            search_start = max(start + chunk_size - 80, start)
            last_break = max(
                text.rfind(" ", search_start, end), text.rfind("\n", search_start, end)
            )
            if last_break > start:
                end = last_break

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        if end >= len(text):
            break
        start = max(end - overlap, start + 1)

    return chunks


def chunk_document(
    content: str, source: str, chunk_size: int = 800, overlap: int = 100
) -> List[Dict]:
    """
    Procesa un documento: extrae secciones y hace chunking de cada una.

    Args:
        content: Texto markdown del documento
        source: Título o nombre del documento
        chunk_size: Tamaño de chunks en caracteres
        overlap: Overlap entre chunks (debe ser menor que chunk_size)

    Returns:
        Lista de {text, metadata: {source, section, section_level,
        chunk_index, total_chunks_in_section}}
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size debe ser positivo")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap debe estar entre 0 y chunk_size")

    chunks = []
    for section in extract_sections(content, source):
        pieces = chunk_text(section["text"], chunk_size, overlap)
        for i, piece in enumerate(pieces):
            chunks.append(
                {
                    "text": piece,
                    "metadata": {
                        "source": section["source"],
                        "section": section["header"],
                        "section_level": section["level"],
                        "chunk_index": i,
                        "total_chunks_in_section": len(pieces),
                    },
                }
            )

    return chunks
