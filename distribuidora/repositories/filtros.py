# ==============================================================================
# FILTROS DE CONSULTA
# ==============================================================================
# Representación neutral de los filtros que entiende cualquier gateway.
# Los servicios arman Filtro/FiltroOr; cada gateway los traduce a su
# sintaxis (PostgREST en producción, comparación directa en los tests).
# ==============================================================================

import re
from typing import Any, Iterable, List, Mapping, NamedTuple, Tuple, Union


OPERADORES = frozenset([
    'eq', 'neq', 'gt', 'gte', 'lt', 'lte', 'like', 'ilike', 'in', 'is'
])

# Sintaxis que el backend interpreta dentro de un filtro "or=(...)"
_SINTAXIS_FILTRO = re.compile(r'[,.()\[\]%]')

LARGO_MAXIMO_TERMINO = 100


class Filtro(NamedTuple):
    """Condición simple: columna OPERADOR valor."""
    columna: str
    operador: str = 'eq'
    valor: Any = None


class FiltroOr(NamedTuple):
    """Disyunción de condiciones simples."""
    condiciones: Tuple[Filtro, ...]


FiltroLike = Union[Filtro, FiltroOr]


def _es_vacio(valor: Any) -> bool:
    return valor is None or valor == ''


def normalizar_filtros(
    filtros: Union[None, Mapping[str, Any], Iterable[FiltroLike]]
) -> List[FiltroLike]:
    """
    Convierte los filtros a una lista de Filtro/FiltroOr.

    Acepta:
        - dict {columna: valor} → igualdad
        - dict {columna: (operador, valor)} → operador explícito
        - lista de Filtro / FiltroOr (se respeta tal cual)

    Los valores None o '' se ignoran (filtro "no aplicado"), salvo con
    el operador 'is', donde None significa `is null`.

    Raises:
        ValueError: si el operador no está soportado
    """
    if not filtros:
        return []

    resultado: List[FiltroLike] = []

    if isinstance(filtros, Mapping):
        for columna, valor in filtros.items():
            if isinstance(valor, tuple) and len(valor) == 2 and valor[0] in OPERADORES:
                operador, valor = valor
            else:
                operador = 'eq'
            if operador != 'is' and _es_vacio(valor):
                continue
            resultado.append(Filtro(columna, operador, valor))
    else:
        for filtro in filtros:
            if isinstance(filtro, FiltroOr):
                resultado.append(filtro)
                continue
            if filtro.operador != 'is' and _es_vacio(filtro.valor):
                continue
            resultado.append(filtro)

    for filtro in resultado:
        condiciones = filtro.condiciones if isinstance(filtro, FiltroOr) else (filtro,)
        for condicion in condiciones:
            if condicion.operador not in OPERADORES:
                raise ValueError(f"Operador de filtro no soportado: {condicion.operador}")

    return resultado


def escapar_termino(termino: Any) -> str:
    """
    Limpia un término de búsqueda libre antes de usarlo en un filtro.

    Elimina la sintaxis de filtros (comas, puntos, paréntesis, corchetes)
    y los comodines manuales (el servicio agrega los suyos).

    Ejemplo:
        escapar_termino("%a%,razon_social.ilike.%") → "arazon_socialilike"
    """
    if termino is None or termino == '':
        return ''
    limpio = _SINTAXIS_FILTRO.sub('', str(termino)).strip()
    return limpio[:LARGO_MAXIMO_TERMINO]


def contiene(columnas: Iterable[str], termino: str) -> FiltroOr:
    """Búsqueda case-insensitive de `termino` en cualquiera de las columnas."""
    patron = f"%{termino}%"
    return FiltroOr(tuple(Filtro(c, 'ilike', patron) for c in columnas))
