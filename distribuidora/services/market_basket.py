# ==============================================================================
# ANÁLISIS DE CANASTA DE PRODUCTOS
# ==============================================================================
# Qué productos se compran juntos, con métricas de asociación:
#   - frecuencia: pedidos que contienen el par
#   - confianza:  max(P(B|A), P(A|B)) en porcentaje
#   - lift:       co-ocurrencia observada / esperada si fueran independientes
#                 (>1 = se compran juntos más de lo que indica el azar)
# ==============================================================================

from itertools import combinations
from typing import Any, Dict, Iterable, List


def _productos_del_pedido(pedido: Dict[str, Any]) -> List[Any]:
    """IDs de producto distintos del pedido, sin vacíos, en orden de aparición."""
    vistos = []
    for item in pedido.get('items') or []:
        producto_id = item.get('producto_id')
        if producto_id and producto_id not in vistos:
            vistos.append(producto_id)
    return vistos


def _clave_par(a: Any, b: Any) -> tuple:
    return (a, b) if str(a) < str(b) else (b, a)


def calcular_canasta(pedidos: Iterable[Dict[str, Any]], min_support: int = 3) -> List[Dict[str, Any]]:
    """
    Calcula los pares de productos que aparecen juntos en los pedidos.

    Args:
        pedidos: Lista de {'items': [{'producto_id': ...}, ...]}
        min_support: Mínimo de pedidos en que debe aparecer un par

    Returns:
        Lista de {producto_a, producto_b, frecuencia, confianza, lift}
        ordenada por lift descendente. Vacía si hay menos de 2 pedidos.
    """
    pedidos = list(pedidos)
    total = len(pedidos)
    if total < 2:
        return []

    frecuencia_producto: Dict[Any, int] = {}
    frecuencia_par: Dict[tuple, int] = {}

    for pedido in pedidos:
        productos = _productos_del_pedido(pedido)
        for producto_id in productos:
            frecuencia_producto[producto_id] = frecuencia_producto.get(producto_id, 0) + 1
        for a, b in combinations(productos, 2):
            clave = _clave_par(a, b)
            frecuencia_par[clave] = frecuencia_par.get(clave, 0) + 1

    resultados = []
    for (a, b), cantidad in frecuencia_par.items():
        if cantidad < min_support:
            continue

        freq_a = frecuencia_producto.get(a, 0)
        freq_b = frecuencia_producto.get(b, 0)

        confianza_a_b = cantidad / freq_a if freq_a else 0
        confianza_b_a = cantidad / freq_b if freq_b else 0

        esperado = (freq_a / total) * (freq_b / total) * total
        lift = cantidad / esperado if esperado > 0 else 0

        resultados.append({
            'producto_a': a,
            'producto_b': b,
            'frecuencia': cantidad,
            'confianza': max(confianza_a_b, confianza_b_a) * 100,
            'lift': lift,
        })

    resultados.sort(key=lambda r: r['lift'], reverse=True)
    return resultados


def recomendacion(lift: float) -> str:
    """Fuerza de la asociación según el lift."""
    if lift > 1.5:
        return 'Fuerte'
    if lift > 1:
        return 'Moderada'
    return 'Debil'
