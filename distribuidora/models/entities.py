# ==============================================================================
# ENTIDADES DEL DOMINIO - Definiciones de dataclasses
# ==============================================================================
# Cada entidad representa un concepto del negocio.
# Los registros persistidos viajan como diccionarios planos (tal como los
# devuelve el backend); estas clases cubren las estructuras transitorias
# que arma la aplicación y los conjuntos de estados válidos.
# ==============================================================================

from dataclasses import dataclass, asdict
from typing import Any, Dict, Union
from enum import Enum


# ==============================================================================
# ENUMERACIONES - Estados y tipos válidos
# ==============================================================================

class EstadoPedido(str, Enum):
    """Estados posibles de un pedido."""
    PENDIENTE = "pendiente"
    EN_PREPARACION = "en_preparacion"
    ASIGNADO = "asignado"          # Transportista asignado
    EN_CAMINO = "en_camino"
    ENTREGADO = "entregado"
    CANCELADO = "cancelado"


ESTADOS_PEDIDO = frozenset(e.value for e in EstadoPedido)

# Estados en los que el pedido todavía no terminó su ciclo
ESTADOS_ABIERTOS = frozenset([
    EstadoPedido.PENDIENTE.value,
    EstadoPedido.EN_PREPARACION.value,
    EstadoPedido.ASIGNADO.value,
    EstadoPedido.EN_CAMINO.value,
])


class MotivoMerma(str, Enum):
    """Motivos aceptados por la tabla mermas_stock."""
    ROTURA = "rotura"
    VENCIMIENTO = "vencimiento"
    ROBO = "robo"
    DECOMISO = "decomiso"
    DEVOLUCION = "devolucion"
    ERROR_INVENTARIO = "error_inventario"
    MUESTRA = "muestra"
    OTRO = "otro"


MOTIVOS_MERMA = frozenset(m.value for m in MotivoMerma)


# ==============================================================================
# ENTIDADES DE STOCK
# ==============================================================================

@dataclass
class StockItem:
    """
    Par producto/cantidad usado para reservar, liberar o verificar stock.
    No se persiste.

    Attributes:
        producto_id: ID del producto
        cantidad: Unidades pedidas
    """
    producto_id: Any
    cantidad: int

    def to_dict(self) -> Dict[str, Any]:
        """Formato que esperan las RPCs de stock."""
        return {'producto_id': self.producto_id, 'cantidad': self.cantidad}

    @classmethod
    def from_any(cls, item: Union['StockItem', Dict[str, Any]]) -> 'StockItem':
        """Acepta una instancia o un dict con producto_id/cantidad."""
        if isinstance(item, cls):
            return item
        return cls(
            producto_id=item.get('producto_id'),
            cantidad=int(item.get('cantidad', 0) or 0)
        )


@dataclass
class StockFaltante:
    """
    Producto sin stock suficiente para lo solicitado.

    Attributes:
        producto_id: ID del producto
        nombre: Nombre (o "Producto no encontrado")
        solicitado: Cantidad pedida
        disponible: Stock real al momento de la verificación
        codigo: Código del producto, si existe
    """
    producto_id: Any
    nombre: str
    solicitado: int
    disponible: int
    codigo: str = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['codigo'] is None:
            data.pop('codigo')
        return data


# ==============================================================================
# ENTIDADES DE PEDIDOS
# ==============================================================================

@dataclass
class OrdenEntrega:
    """Posición de un pedido dentro del recorrido del transportista."""
    pedido_id: Any
    orden_entrega: int

    def to_dict(self) -> Dict[str, Any]:
        return {'pedido_id': self.pedido_id, 'orden_entrega': self.orden_entrega}

    def to_rpc(self) -> Dict[str, Any]:
        """Forma que espera actualizar_orden_entrega_batch."""
        return {'pedido_id': self.pedido_id, 'orden': self.orden_entrega}

    @classmethod
    def from_any(cls, item: Union['OrdenEntrega', Dict[str, Any]]) -> 'OrdenEntrega':
        if isinstance(item, cls):
            return item
        return cls(
            pedido_id=item.get('pedido_id'),
            orden_entrega=int(item.get('orden_entrega', item.get('orden')) or 0)
        )
