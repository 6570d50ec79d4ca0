"""
Script para inicializar la base de datos SQLite de AgentFlow.
Aplica el schema y opcionalmente crea un agente de demo.

Uso:
    python scripts/utils/init_db.py [--reset] [--demo-agent]
"""

import argparse
import sys
from pathlib import Path

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(project_root))

from agent.db_service import DBService
from api.config import get_settings

DEMO_PROMPT = (
    "You are a helpful customer support assistant. Answer clearly and concisely, "
    "and ask for clarification when a question is ambiguous."
)


def init_database(reset: bool = False, demo_agent: bool = False) -> Path:
    """Crea (o recrea) la base de datos en DATABASE_PATH."""
    db_path = get_settings().db_full_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if db_path.exists() and reset:
        print(f"⚠️  Borrando base de datos existente en {db_path}")
        db_path.unlink()

    print(f"📦 Inicializando base de datos en {db_path}")
    db = DBService(db_path)
    db.init_schema()

    if demo_agent:
        agent = db.create_agent("Demo Agent", DEMO_PROMPT)
        print(f"🤖 Agente de demo creado (id={agent['id']})")

    print(f"\n🎉 Inicialización completada. DB: {db_path}")
    return db_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inicializa la base de datos de AgentFlow")
    parser.add_argument("--reset", action="store_true", help="Borra la base existente")
    parser.add_argument("--demo-agent", action="store_true", help="Crea un agente de demo")
    args = parser.parse_args()

    init_database(reset=args.reset, demo_agent=args.demo_agent)
