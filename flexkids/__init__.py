"""Caché local offline-first y sincronización en segundo plano para Flex Kids."""

__version__ = "1.0.0"
