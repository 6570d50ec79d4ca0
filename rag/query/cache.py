"""
TTL Cache - Caché en memoria con expiración por entrada.

Este módulo implementa:
1. get/set con TTL configurable (por defecto y por entrada)
2. Expiración perezosa en lectura + limpieza explícita con cleanup()
3. Límite de tamaño con eviction LRU
4. Estadísticas de hits/misses

No hay instancia global: cada componente recibe su caché inyectado,
y los tests construyen uno nuevo por corrida.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """Cache clave→valor con TTL y eviction LRU."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Inicializa el cache.

        Args:
            ttl_seconds: Tiempo de vida por defecto de cada entrada
            max_size: Número máximo de entradas antes de desalojar la menos usada
            clock: Fuente de tiempo (inyectable para tests)
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds debe ser positivo")
        if max_size <= 0:
            raise ValueError("max_size debe ser positivo")

        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock

        # clave → (valor, expira_en); el orden refleja el último acceso
        self._entries: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()

        # Stats
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Devuelve el valor si existe y no expiró; si no, default."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default

            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return default

            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Guarda un valor. ttl_seconds pisa el TTL por defecto para esta entrada."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def add(self, key: Hashable, value: Any = True, ttl_seconds: Optional[float] = None) -> bool:
        """Guarda solo si la clave no está viva. True si se agregó (útil para dedupe)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() < entry[1]:
                return False
        self.set(key, value, ttl_seconds)
        return True

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry[1]

    def __len__(self) -> int:
        return len(self._entries)

    def cleanup(self) -> int:
        """Elimina entradas expiradas. Retorna cuántas se borraron."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Cache cleanup: {len(expired)} entradas expiradas")
        return len(expired)

    def get_stats(self) -> Dict:
        """Retorna estadísticas del cache."""
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0.0

        return {
            "entries": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "ttl_seconds": self.ttl_seconds,
        }

    def clear(self):
        """Limpia todo el cache."""
        with self._lock:
            self._entries.clear()
        self.hits = 0
        self.misses = 0
