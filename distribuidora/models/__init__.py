# ==============================================================================
# CAPA DE MODELOS - Estructuras de datos del sistema
# ==============================================================================
# Estados válidos y estructuras transitorias (StockItem, StockFaltante,
# OrdenEntrega). Los registros del backend viajan como dicts planos.
# ==============================================================================

from .entities import (
    # Pedidos
    EstadoPedido,
    ESTADOS_PEDIDO,
    ESTADOS_ABIERTOS,
    OrdenEntrega,

    # Stock
    StockItem,
    StockFaltante,
    MotivoMerma,
    MOTIVOS_MERMA,
)

__all__ = [
    'EstadoPedido',
    'ESTADOS_PEDIDO',
    'ESTADOS_ABIERTOS',
    'OrdenEntrega',
    'StockItem',
    'StockFaltante',
    'MotivoMerma',
    'MOTIVOS_MERMA',
]
