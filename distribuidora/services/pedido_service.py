# ==============================================================================
# SERVICIO DE PEDIDOS
# ==============================================================================
# Ciclo de vida de los pedidos: creación, edición de items, cambios de
# estado, asignación de transportista, orden de entrega y eliminación.
#
# Las operaciones que tocan stock o varias tablas a la vez (crear, editar
# items, eliminar) se ejecutan con procedimientos atómicos del backend y NO
# tienen fallback manual: un fallback rompería la atomicidad.
# ==============================================================================

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from distribuidora.exceptions import EstadoInvalidoError, GatewayError
from distribuidora.models.entities import ESTADOS_PEDIDO, EstadoPedido, OrdenEntrega
from distribuidora.repositories.filtros import Filtro
from distribuidora.services.base_service import BaseService, verificar_resultado


logger = logging.getLogger(__name__)


def _ahora_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _total_items(items: List[Dict[str, Any]]) -> float:
    return sum(
        (item.get('cantidad') or 0) * (item.get('precio_unitario') or 0)
        for item in items
    )


class PedidoService(BaseService):
    """
    Servicio de pedidos.

    Responsabilidades:
    - Consultas filtradas y estadísticas
    - Transiciones de estado con historial
    - Creación / edición / eliminación atómica
    - Orden de entrega del recorrido
    """

    def __init__(self, gateway, default_cache_ttl: float = 0):
        super().__init__(
            gateway,
            'pedidos',
            order_by='fecha_creacion',
            ascending=False,
            default_cache_ttl=default_cache_ttl
        )

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def get_pedidos_filtrados(self, filtros: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        """
        Pedidos filtrados por cualquier combinación de criterios.

        Args:
            filtros: Diccionario con cualquiera de:
                estado ('todos' = sin filtro), cliente_id, preventista_id,
                transportista_id, fecha_desde, fecha_hasta, forma_pago, zona

        Returns:
            Pedidos ordenados del más reciente al más antiguo
        """
        filtros = filtros or {}
        condiciones: List[Filtro] = []

        estado = filtros.get('estado')
        if estado and estado != 'todos':
            condiciones.append(Filtro('estado', 'eq', estado))

        for campo in ('cliente_id', 'preventista_id', 'transportista_id', 'forma_pago'):
            if filtros.get(campo):
                condiciones.append(Filtro(campo, 'eq', filtros[campo]))

        if filtros.get('fecha_desde'):
            condiciones.append(Filtro('fecha_creacion', 'gte', filtros['fecha_desde']))
        if filtros.get('fecha_hasta'):
            condiciones.append(Filtro('fecha_creacion', 'lte', filtros['fecha_hasta']))

        # La zona es del cliente: se resuelve a la lista de clientes de esa zona
        zona = filtros.get('zona')
        if zona:
            try:
                clientes = self.gateway.select(
                    'clientes', columnas='id', filtros=[Filtro('zona', 'eq', zona)]
                )
            except GatewayError as e:
                self.handle_error('obtener clientes de la zona', e)
                return []
            ids = [c['id'] for c in clientes]
            if not ids:
                return []
            condiciones.append(Filtro('cliente_id', 'in', ids))

        return self.get_all(filters=condiciones)

    def get_estadisticas(self, desde: Optional[str] = None, hasta: Optional[str] = None) -> Dict[str, Any]:
        """
        Estadísticas de pedidos del período.

        Returns:
            {total, por_estado, total_ventas, promedio_ticket, pendientes, entregados}
            total_ventas y promedio_ticket solo cuentan pedidos entregados.
        """
        filtros = []
        if desde:
            filtros.append(Filtro('fecha_creacion', 'gte', desde))
        if hasta:
            filtros.append(Filtro('fecha_creacion', 'lte', hasta))

        try:
            pedidos = self.gateway.select(self.tabla, columnas='id, estado, total', filtros=filtros)
        except GatewayError as e:
            self.handle_error('obtener estadísticas', e)
            pedidos = []

        por_estado: Dict[str, int] = {}
        for pedido in pedidos:
            estado = pedido.get('estado')
            por_estado[estado] = por_estado.get(estado, 0) + 1

        entregados = [p for p in pedidos if p.get('estado') == EstadoPedido.ENTREGADO.value]
        total_ventas = sum(float(p.get('total') or 0) for p in entregados)
        promedio_ticket = total_ventas / len(entregados) if entregados else 0

        return {
            'total': len(pedidos),
            'por_estado': por_estado,
            'total_ventas': total_ventas,
            'promedio_ticket': promedio_ticket,
            'pendientes': por_estado.get(EstadoPedido.PENDIENTE.value, 0),
            'entregados': por_estado.get(EstadoPedido.ENTREGADO.value, 0),
        }

    # =========================================================================
    # ESTADOS
    # =========================================================================

    def cambiar_estado(
        self,
        pedido_id: Any,
        nuevo_estado: str,
        notas: str = '',
        usuario_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        """
        Cambia el estado de un pedido y lo registra en el historial.

        Args:
            pedido_id: ID del pedido
            nuevo_estado: Uno de los estados de EstadoPedido
            notas: Comentario que se guarda junto al cambio
            usuario_id: Quién hizo el cambio (opcional)

        Returns:
            El pedido actualizado

        Raises:
            EstadoInvalidoError: si el estado no existe (antes de tocar el backend)
        """
        if nuevo_estado not in ESTADOS_PEDIDO:
            raise EstadoInvalidoError(f"Estado inválido: {nuevo_estado}")

        anterior = self.get_by_id(pedido_id)

        cambios = {'estado': nuevo_estado}
        if nuevo_estado == EstadoPedido.ENTREGADO.value:
            cambios['fecha_entrega'] = _ahora_iso()

        pedido = self.update(pedido_id, cambios)
        if pedido is None:
            return None

        self.registrar_historial(
            pedido_id,
            'estado',
            f"{nuevo_estado}: {notas}" if notas else nuevo_estado,
            valor_anterior=anterior.get('estado') if anterior else None,
            usuario_id=usuario_id
        )
        return pedido

    def asignar_transportista(
        self,
        pedido_id: Any,
        transportista_id: Any,
        usuario_id: Any = None
    ) -> Optional[Dict[str, Any]]:
        """Asigna el transportista y pasa el pedido a 'asignado'."""
        pedido = self.update(pedido_id, {
            'transportista_id': transportista_id,
            'estado': EstadoPedido.ASIGNADO.value,
        })
        self.registrar_historial(
            pedido_id, 'transportista_id', str(transportista_id), usuario_id=usuario_id
        )
        return pedido

    def actualizar_orden_entrega(self, ordenes: Iterable[Union[OrdenEntrega, Dict[str, Any]]]) -> bool:
        """
        Guarda el orden de visita de los pedidos de un recorrido.

        Todo o nada mediante el procedimiento en lote; si el procedimiento no
        está disponible se actualiza pedido por pedido.
        """
        filas = [OrdenEntrega.from_any(o) for o in ordenes]
        if not filas:
            return True

        def _uno_a_uno():
            for fila in filas:
                self.update(fila.pedido_id, {'orden_entrega': fila.orden_entrega})
            return None

        self.rpc(
            'actualizar_orden_entrega_batch',
            {'ordenes': [fila.to_rpc() for fila in filas]},
            fallback=_uno_a_uno
        )
        self.invalidate_cache()
        return True

    # =========================================================================
    # OPERACIONES ATÓMICAS
    # =========================================================================

    def crear_pedido_completo(self, datos: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Crea el pedido, sus items y descuenta stock en una transacción.

        Args:
            datos: {cliente_id, usuario_id, notas?, forma_pago?, estado_pago?, descuento?}
            items: [{producto_id, cantidad, precio_unitario}]

        Returns:
            El pedido creado

        Raises:
            ValueError: si los items no son válidos
            ServiceError: si el backend rechaza la creación
        """
        validacion = self.validate_items(items)
        if not validacion['valid']:
            raise ValueError('; '.join(validacion['errors']))

        total = _total_items(items) - (datos.get('descuento') or 0)
        resultado = self.rpc('crear_pedido_completo', {
            'p_cliente_id': datos.get('cliente_id'),
            'p_total': total,
            'p_usuario_id': datos.get('usuario_id'),
            'p_items': items,
            'p_notas': datos.get('notas') or None,
            'p_forma_pago': datos.get('forma_pago') or 'efectivo',
            'p_estado_pago': datos.get('estado_pago') or 'pendiente',
        })
        resultado = verificar_resultado(resultado, 'crear_pedido_completo', 'Error creando pedido')
        self.invalidate_cache()

        pedido_id = resultado.get('pedido_id')
        logger.info("[PEDIDOS] Pedido %s creado (total %.2f)", pedido_id, total)
        return self.get_by_id(pedido_id) or {'id': pedido_id}

    def actualizar_items(
        self,
        pedido_id: Any,
        items: List[Dict[str, Any]],
        usuario_id: Any = None
    ) -> Dict[str, Any]:
        """
        Reemplaza los items de un pedido ajustando stock en el backend.

        Returns:
            {'success': True, 'total_nuevo': float}

        Raises:
            ValueError: si los items no son válidos
            ServiceError: si el backend rechaza el cambio
        """
        validacion = self.validate_items(items)
        if not validacion['valid']:
            raise ValueError('; '.join(validacion['errors']))

        resultado = self.rpc('actualizar_pedido_items', {
            'p_pedido_id': pedido_id,
            'p_items_nuevos': items,
            'p_usuario_id': usuario_id,
        })
        resultado = verificar_resultado(resultado, 'actualizar_pedido_items', 'Error actualizando items')
        self.invalidate_cache()
        return resultado

    def eliminar_pedido(
        self,
        pedido_id: Any,
        restaurar_stock: bool = True,
        motivo: str = '',
        usuario_id: Any = None
    ) -> bool:
        """
        Elimina el pedido dejando una copia en pedidos_eliminados.

        Raises:
            ServiceError: si el backend rechaza la eliminación
        """
        resultado = self.rpc('eliminar_pedido_completo', {
            'p_pedido_id': pedido_id,
            'p_restaurar_stock': restaurar_stock,
            'p_usuario_id': usuario_id,
            'p_motivo': motivo or None,
        })
        verificar_resultado(resultado, 'eliminar_pedido_completo', 'Error eliminando pedido')
        self.invalidate_cache()
        return True

    # =========================================================================
    # HISTORIAL
    # =========================================================================

    def registrar_historial(
        self,
        pedido_id: Any,
        campo_modificado: str,
        valor_nuevo: Any,
        valor_anterior: Any = None,
        usuario_id: Any = None
    ) -> None:
        """Agrega un evento al historial. Si falla, solo se loguea."""
        try:
            self.gateway.insert('pedido_historial', [{
                'pedido_id': pedido_id,
                'usuario_id': usuario_id,
                'campo_modificado': campo_modificado,
                'valor_anterior': valor_anterior,
                'valor_nuevo': valor_nuevo,
            }])
        except GatewayError as e:
            logger.warning("[PEDIDOS] No se pudo registrar historial de %s: %s", pedido_id, e)

    def get_historial(self, pedido_id: Any) -> List[Dict[str, Any]]:
        try:
            return self.gateway.select(
                'pedido_historial',
                filtros=[Filtro('pedido_id', 'eq', pedido_id)],
                order_by='created_at',
                ascending=False
            )
        except GatewayError as e:
            self.handle_error('obtener historial', e)
            return []

    def get_pedidos_eliminados(self) -> List[Dict[str, Any]]:
        try:
            return self.gateway.select(
                'pedidos_eliminados',
                order_by='eliminado_at',
                ascending=False
            )
        except GatewayError as e:
            self.handle_error('obtener pedidos eliminados', e)
            return []

    # =========================================================================
    # VALIDACIÓN
    # =========================================================================

    def validate_items(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Valida la lista de items de un pedido.

        Returns:
            {'valid': bool, 'errors': [str]}
        """
        errors = []
        if not items:
            errors.append('El pedido debe tener al menos un item')

        for i, item in enumerate(items or [], start=1):
            if not item.get('producto_id'):
                errors.append(f"Item {i}: falta el producto")
            try:
                if float(item.get('cantidad') or 0) <= 0:
                    errors.append(f"Item {i}: la cantidad debe ser mayor a 0")
            except (TypeError, ValueError):
                errors.append(f"Item {i}: la cantidad debe ser numérica")
            try:
                if float(item.get('precio_unitario') or 0) < 0:
                    errors.append(f"Item {i}: el precio no puede ser negativo")
            except (TypeError, ValueError):
                errors.append(f"Item {i}: el precio debe ser numérico")

        return {'valid': len(errors) == 0, 'errors': errors}
