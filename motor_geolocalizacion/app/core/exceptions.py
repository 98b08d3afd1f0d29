"""
exceptions.py
-------------
Excepciones personalizadas del Motor de Geolocalización.

Todas heredan de GeoEngineException para poder capturarlas
en un solo handler global en main.py.

El núcleo del motor nunca lanza por razones de negocio: los fallos de
proveedores, caché o base de datos se traducen en resultados degradados.
Solo InvalidConfigurationException escapa del núcleo, y únicamente
al construir un componente con configuración inválida.
"""


class GeoEngineException(Exception):
    """Base de todas las excepciones del motor."""
    status_code: int = 500
    message: str = "Error interno del motor de geolocalización."

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.message
        super().__init__(self.message)


# ─────────────────────────────────────────────────────────────────────
# Errores de contrato (configuración)
# ─────────────────────────────────────────────────────────────────────

class InvalidConfigurationException(GeoEngineException):
    """Un componente se construyó con parámetros inválidos."""
    status_code = 500
    message = "Configuración inválida del motor de geolocalización."


# ─────────────────────────────────────────────────────────────────────
# Errores de infraestructura (siempre capturados dentro del núcleo)
# ─────────────────────────────────────────────────────────────────────

class CacheUnavailableException(GeoEngineException):
    """Redis no está disponible. El motor calcula sin caché."""
    status_code = 503
    message = "Caché temporalmente no disponible."


class RangeStoreUnavailableException(GeoEngineException):
    """El almacén de rangos IP aprendidos no respondió."""
    status_code = 503
    message = "Almacén de rangos aprendidos no disponible."


class ExternalApiUnavailableException(GeoEngineException):
    """Una API externa (proveedor de geolocalización o RDAP) no respondió en el tiempo límite."""
    status_code = 503
    message = "No se pudo completar la consulta externa."
