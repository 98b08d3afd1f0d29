"""
logging_config.py
-----------------
Configuración del logging estándar para el motor.

Cada módulo usa logging.getLogger(__name__) y prefija sus mensajes
con la etiqueta del componente, por ejemplo "[Ensemble] ip=... ".
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s - %(message)s"


def setup_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)

    # httpx loggea cada request en INFO; demasiado ruido con 6 proveedores
    logging.getLogger("httpx").setLevel(logging.WARNING)
