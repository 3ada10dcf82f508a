"""Core module - Servicio de push Redis → MQTT.

Estructura:
- domain/         → Modelos, errores y catálogo de unidades
- normalization/  → Decodificación y validación de lecturas
- redis/          → Lectura resiliente desde Redis
- transport/      → Publicación MQTT + watchdog de reconexión
- monitoring/     → Stats, health y métricas
"""
