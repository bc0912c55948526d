# ==============================================================================
# GESTOR DE STOCK
# ==============================================================================
# Centraliza las reglas de negocio de stock:
#   - Verificación de disponibilidad
#   - Reserva y liberación (siempre vía procedimientos atómicos)
#   - Ajuste por diferencia al editar un pedido, con rollback compensatorio
#   - Registro de mermas (rotura, vencimiento, robo...)
#   - Alertas de stock bajo y resumen de movimientos
#
# Los métodos públicos devuelven {'success': bool, 'error': str} o datos.
# Solo registrar_merma lanza excepciones.
# ==============================================================================

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from distribuidora.exceptions import GatewayError, ServiceError
from distribuidora.models.entities import (
    MOTIVOS_MERMA,
    EstadoPedido,
    MotivoMerma,
    StockFaltante,
    StockItem,
)
from distribuidora.performance_logger import profile_function
from distribuidora.repositories.filtros import Filtro
from distribuidora.services.base_service import seleccionar_por_ids
from distribuidora.services.producto_service import ProductoService


logger = logging.getLogger(__name__)

ItemLike = Union[StockItem, Dict[str, Any]]


def agrupar_items(items: Iterable[ItemLike]) -> Dict[Any, int]:
    """Suma las cantidades por producto, respetando el orden de aparición."""
    cantidades: Dict[Any, int] = {}
    for item in items or []:
        item = StockItem.from_any(item)
        cantidades[item.producto_id] = cantidades.get(item.producto_id, 0) + item.cantidad
    return cantidades


def _a_items(cantidades: Dict[Any, int]) -> List[StockItem]:
    return [StockItem(pid, cantidad) for pid, cantidad in cantidades.items()]


class StockManager:
    """
    Gestor de stock.

    Uso:
        manager = StockManager(producto_service)
        resultado = manager.reservar_stock([{'producto_id': 1, 'cantidad': 3}])
        if not resultado['success']:
            print(resultado['error'])
    """

    def __init__(self, producto_service: ProductoService, umbral_stock_bajo: int = 10):
        """
        Args:
            producto_service: Servicio de productos (acceso a stock atómico)
            umbral_stock_bajo: Umbral por defecto para alertas
        """
        self.producto_service = producto_service
        self.gateway = producto_service.gateway
        self.umbral_stock_bajo = umbral_stock_bajo

    def set_umbral_stock_bajo(self, umbral: int) -> None:
        self.umbral_stock_bajo = umbral

    # =========================================================================
    # DISPONIBILIDAD
    # =========================================================================

    def verificar_disponibilidad(self, items: Iterable[ItemLike]) -> Dict[str, Any]:
        """
        Verifica si hay stock para todos los items (no modifica nada).

        Args:
            items: Lista de {producto_id, cantidad}

        Returns:
            {'disponible': bool, 'faltantes': [StockFaltante como dict]}
            Si no se pudo leer el stock: {'disponible': False, 'faltantes': [], 'error': str}
        """
        solicitados = agrupar_items(items)
        try:
            productos = {
                p['id']: p for p in seleccionar_por_ids(
                    self.gateway, 'productos', solicitados, columnas='id, nombre, codigo, stock'
                )
            }
        except GatewayError as e:
            logger.error("[STOCK] No se pudo leer el stock para verificar: %s", e)
            return {
                'disponible': False,
                'faltantes': [],
                'error': f"No se pudo verificar el stock: {e}",
            }

        faltantes: List[StockFaltante] = []
        for producto_id, cantidad in solicitados.items():
            producto = productos.get(producto_id)
            if producto is None:
                faltantes.append(StockFaltante(
                    producto_id=producto_id,
                    nombre='Producto no encontrado',
                    solicitado=cantidad,
                    disponible=0
                ))
                continue

            stock = producto.get('stock') or 0
            if stock < cantidad:
                faltantes.append(StockFaltante(
                    producto_id=producto_id,
                    nombre=producto.get('nombre'),
                    codigo=producto.get('codigo'),
                    solicitado=cantidad,
                    disponible=stock
                ))

        return {
            'disponible': len(faltantes) == 0,
            'faltantes': [f.to_dict() for f in faltantes],
        }

    # =========================================================================
    # RESERVA / LIBERACIÓN
    # =========================================================================

    def reservar_stock(self, items: Iterable[ItemLike], validar: bool = True) -> Dict[str, Any]:
        """
        Descuenta stock para un pedido.

        Args:
            items: Lista de {producto_id, cantidad}
            validar: Verificar disponibilidad antes (no se descuenta nada si falta)

        Returns:
            {'success': True} o {'success': False, 'error': str, 'faltantes'?: [...]}
        """
        items = _a_items(agrupar_items(items))
        try:
            if validar:
                verificacion = self.verificar_disponibilidad(items)
                if verificacion.get('error'):
                    return {'success': False, 'error': verificacion['error']}
                if not verificacion['disponible']:
                    detalle = ', '.join(
                        f"{f['nombre']}: {f['disponible']}/{f['solicitado']}"
                        for f in verificacion['faltantes']
                    )
                    return {
                        'success': False,
                        'error': f"Stock insuficiente: {detalle}",
                        'faltantes': verificacion['faltantes'],
                    }

            self.producto_service.descontar_stock(items)
            return {'success': True}
        except (ServiceError, GatewayError) as e:
            return {'success': False, 'error': str(e)}

    def liberar_stock(self, items: Iterable[ItemLike]) -> Dict[str, Any]:
        """Devuelve stock (ej. pedido cancelado)."""
        try:
            self.producto_service.restaurar_stock(_a_items(agrupar_items(items)))
            return {'success': True}
        except (ServiceError, GatewayError) as e:
            return {'success': False, 'error': str(e)}

    @profile_function(name="Ajustar diferencia de stock")
    def ajustar_diferencia(
        self,
        originales: Iterable[ItemLike],
        nuevos: Iterable[ItemLike]
    ) -> Dict[str, Any]:
        """
        Ajusta el stock al editar los items de un pedido.

        Primero devuelve lo que se quitó o redujo; después reserva (validando)
        lo que se agregó o aumentó. Si la reserva falla, vuelve a descontar
        lo devuelto (sin validar) y responde con el error de la reserva.

        Returns:
            {'success': True} o el resultado fallido de la operación que falló
        """
        mapa_original = agrupar_items(originales)
        mapa_nuevo = agrupar_items(nuevos)

        para_restaurar: Dict[Any, int] = {}
        para_descontar: Dict[Any, int] = {}

        for producto_id in list(mapa_original) + [p for p in mapa_nuevo if p not in mapa_original]:
            diferencia = mapa_nuevo.get(producto_id, 0) - mapa_original.get(producto_id, 0)
            if diferencia < 0:
                para_restaurar[producto_id] = -diferencia
            elif diferencia > 0:
                para_descontar[producto_id] = diferencia

        if para_restaurar:
            resultado = self.liberar_stock(_a_items(para_restaurar))
            if not resultado['success']:
                return resultado

        if para_descontar:
            resultado = self.reservar_stock(_a_items(para_descontar), validar=True)
            if not resultado['success']:
                if para_restaurar:
                    rollback = self.reservar_stock(_a_items(para_restaurar), validar=False)
                    if not rollback['success']:
                        logger.error(
                            "[STOCK] Falló el rollback del ajuste (%s): %s",
                            para_restaurar, rollback['error']
                        )
                return resultado

        return {'success': True}

    # =========================================================================
    # MERMAS
    # =========================================================================

    @profile_function(name="Registrar merma")
    def registrar_merma(self, entrada: Dict[str, Any]) -> Dict[str, Any]:
        """
        Registra una merma de stock.

        Orden de operaciones:
        1. Leer el stock actual del producto
        2. Descontar stock atómicamente (si falta stock, no se crea registro)
        3. Insertar el registro en mermas_stock
        4. Si el insert falla, devolver el stock y relanzar el error

        Args:
            entrada: {producto_id, cantidad, motivo?, observaciones?, usuario_id?}

        Returns:
            El registro de merma creado

        Raises:
            ValueError: cantidad no positiva o motivo desconocido
            ServiceError: producto inexistente o el descuento de stock falló
            GatewayError: falló la lectura del producto (sin descontar) o el
                insert del registro (stock ya restaurado)
        """
        producto_id = entrada.get('producto_id')
        cantidad = int(entrada.get('cantidad') or 0)
        motivo = entrada.get('motivo') or MotivoMerma.OTRO.value

        if cantidad <= 0:
            raise ValueError("La cantidad de la merma debe ser mayor a 0")
        if motivo not in MOTIVOS_MERMA:
            raise ValueError(f"Motivo de merma inválido: {motivo}")

        encontrados = seleccionar_por_ids(
            self.gateway, 'productos', [producto_id], columnas='id, stock'
        )
        if not encontrados:
            raise ServiceError(f"Producto no encontrado: {producto_id}")
        stock_anterior = encontrados[0].get('stock') or 0

        self.producto_service.actualizar_stock(producto_id, -cantidad)
        stock_nuevo = stock_anterior - cantidad

        registro = {
            'producto_id': producto_id,
            'cantidad': cantidad,
            'motivo': motivo,
            'observaciones': entrada.get('observaciones'),
            'stock_anterior': stock_anterior,
            'stock_nuevo': stock_nuevo,
            'usuario_id': entrada.get('usuario_id'),
        }

        try:
            filas = self.gateway.insert('mermas_stock', [registro])
        except GatewayError as e:
            logger.error("[STOCK] Error insertando merma, restaurando stock: %s", e)
            try:
                self.producto_service.actualizar_stock(producto_id, cantidad)
            except (ServiceError, GatewayError) as rollback_error:
                logger.error(
                    "[STOCK] Error en rollback de stock tras fallo de merma: %s",
                    rollback_error
                )
            raise

        logger.info("[STOCK] Merma registrada: producto %s, %s u. (%s)", producto_id, cantidad, motivo)
        return filas[0] if filas else registro

    def get_mermas(self, filtros: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        """
        Historial de mermas con los datos básicos del producto.

        Args:
            filtros: {producto_id?, desde?, hasta?}
        """
        filtros = filtros or {}
        condiciones = []
        if filtros.get('producto_id'):
            condiciones.append(Filtro('producto_id', 'eq', filtros['producto_id']))
        if filtros.get('desde'):
            condiciones.append(Filtro('created_at', 'gte', filtros['desde']))
        if filtros.get('hasta'):
            condiciones.append(Filtro('created_at', 'lte', filtros['hasta']))

        try:
            mermas = self.gateway.select(
                'mermas_stock',
                filtros=condiciones,
                order_by='created_at',
                ascending=False
            )
            productos = {
                p['id']: p for p in seleccionar_por_ids(
                    self.gateway, 'productos',
                    [m.get('producto_id') for m in mermas],
                    columnas='id, nombre, codigo'
                )
            }
        except GatewayError as e:
            logger.error("[STOCK] Error obteniendo mermas: %s", e)
            return []

        resultado = []
        for merma in mermas:
            merma = dict(merma)
            merma['producto'] = productos.get(merma.get('producto_id'))
            resultado.append(merma)
        return resultado

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def get_productos_stock_bajo(self, umbral: Optional[int] = None) -> List[Dict[str, Any]]:
        if umbral is None:
            umbral = self.umbral_stock_bajo
        return self.producto_service.get_stock_bajo(umbral)

    def get_resumen_movimientos(
        self,
        producto_id: Any,
        desde: Optional[str] = None,
        hasta: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Resumen de salidas de stock de un producto en el período.

        Returns:
            {producto, stock_actual, total_vendido, total_mermas, stock_bajo}
            o None si el producto no existe. total_vendido solo cuenta
            pedidos entregados.
        """
        producto = self.producto_service.get_by_id(producto_id)
        if not producto:
            return None

        filtro_pedidos = [Filtro('estado', 'eq', EstadoPedido.ENTREGADO.value)]
        filtro_mermas = [Filtro('producto_id', 'eq', producto_id)]
        if desde:
            filtro_pedidos.append(Filtro('fecha_creacion', 'gte', desde))
            filtro_mermas.append(Filtro('created_at', 'gte', desde))
        if hasta:
            filtro_pedidos.append(Filtro('fecha_creacion', 'lte', hasta))
            filtro_mermas.append(Filtro('created_at', 'lte', hasta))

        try:
            lineas = self.gateway.select(
                'pedido_items',
                columnas='pedido_id, cantidad',
                filtros=[Filtro('producto_id', 'eq', producto_id)]
            )
            pedidos_entregados = {
                p['id'] for p in seleccionar_por_ids(
                    self.gateway, 'pedidos',
                    [linea.get('pedido_id') for linea in lineas],
                    columnas='id',
                    filtros=filtro_pedidos
                )
            }
            mermas = self.gateway.select('mermas_stock', columnas='cantidad', filtros=filtro_mermas)
        except GatewayError as e:
            logger.error("[STOCK] Error obteniendo movimientos de %s: %s", producto_id, e)
            lineas, pedidos_entregados, mermas = [], set(), []

        total_vendido = sum(
            linea.get('cantidad') or 0 for linea in lineas
            if linea.get('pedido_id') in pedidos_entregados
        )
        total_mermas = sum(m.get('cantidad') or 0 for m in mermas)
        stock_actual = producto.get('stock') or 0

        return {
            'producto': {
                'id': producto.get('id'),
                'nombre': producto.get('nombre'),
                'codigo': producto.get('codigo'),
            },
            'stock_actual': stock_actual,
            'total_vendido': total_vendido,
            'total_mermas': total_mermas,
            'stock_bajo': stock_actual < self.umbral_stock_bajo,
        }
