"""
Agent — Capa de agentes de AgentFlow.

Contiene todo lo que rodea a la generación de respuestas:
- Persistencia SQLite (agentes, conocimiento, sesiones, conversaciones)
- Sesiones de entrenamiento en background
- Motor de flujos de conversación
- Adapters de canales (WhatsApp, Telegram, Discord, Instagram, Messenger, web)
- Orquestador: flujo primero, generador después
"""
