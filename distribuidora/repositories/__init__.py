# ==============================================================================
# CAPA DE REPOSITORIOS - Acceso al backend remoto
# ==============================================================================
# Esta capa encapsula todo el acceso al backend. Los servicios reciben un
# gateway que cumple IGateway y nunca arman requests HTTP por su cuenta.
#
# ESTRUCTURA:
# ├── interfaces.py        → Protocolo IGateway (contrato)
# ├── filtros.py           → Filtro / FiltroOr y sanitización de búsquedas
# └── postgrest_gateway.py → Implementación HTTP (PostgREST)
# ==============================================================================

from .interfaces import IGateway
from .filtros import (
    Filtro,
    FiltroOr,
    OPERADORES,
    normalizar_filtros,
    escapar_termino,
    contiene,
)
from .postgrest_gateway import PostgrestGateway

__all__ = [
    'IGateway',
    'Filtro',
    'FiltroOr',
    'OPERADORES',
    'normalizar_filtros',
    'escapar_termino',
    'contiene',
    'PostgrestGateway',
]
