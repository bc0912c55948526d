# ==============================================================================
# SERVICIO DE PRODUCTOS
# ==============================================================================
# Catálogo de productos y operaciones de stock.
# El stock nunca se modifica con un update directo: siempre pasa por los
# procedimientos atómicos del backend (descontar/restaurar), que validan
# todas las filas antes de confirmar cualquiera.
# ==============================================================================

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from distribuidora.exceptions import GatewayError, ServiceError
from distribuidora.models.entities import StockItem
from distribuidora.repositories.filtros import Filtro, contiene, escapar_termino
from distribuidora.services.base_service import (
    BaseService,
    seleccionar_por_ids,
    verificar_resultado,
)


logger = logging.getLogger(__name__)

# Campos numéricos que no pueden ser negativos (cero es válido)
CAMPOS_NO_NEGATIVOS = (
    ('precio', 'El precio no puede ser negativo'),
    ('precio_final', 'El precio final no puede ser negativo'),
    ('stock', 'El stock no puede ser negativo'),
    ('stock_minimo', 'El stock mínimo no puede ser negativo'),
    ('costo_sin_iva', 'El costo sin IVA no puede ser negativo'),
    ('costo_con_iva', 'El costo con IVA no puede ser negativo'),
)

# Campo de la actualización masiva → columna de la tabla productos
COLUMNAS_PRECIO = {
    'precio_neto': 'precio_sin_iva',
    'imp_internos': 'impuestos_internos',
    'precio_final': 'precio',
}


def _items_para_rpc(items: Iterable[Union[StockItem, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [StockItem.from_any(i).to_dict() for i in items]


class ProductoService(BaseService):
    """
    Servicio de productos.

    Responsabilidades:
    - Búsquedas y filtros del catálogo
    - Descuento y restauración atómica de stock
    - Actualización masiva de precios
    - Validación de datos antes de guardar
    """

    def __init__(self, gateway, default_cache_ttl: float = 0):
        super().__init__(
            gateway,
            'productos',
            order_by='nombre',
            ascending=True,
            default_cache_ttl=default_cache_ttl
        )

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def buscar(self, termino: str) -> List[Dict[str, Any]]:
        """
        Busca productos por nombre o código (sin distinguir mayúsculas).

        Args:
            termino: Texto libre; se limpia antes de consultar

        Returns:
            Productos que coinciden ([] si el término queda vacío)
        """
        seguro = escapar_termino(termino)
        if not seguro:
            return []
        return self.get_all(filters=[contiene(('nombre', 'codigo'), seguro)])

    def get_by_categoria(self, categoria: str) -> List[Dict[str, Any]]:
        return self.get_all(filters={'categoria': categoria})

    def get_stock_bajo(self, umbral: int = 10) -> List[Dict[str, Any]]:
        """Productos con stock menor al umbral, de menor a mayor stock."""
        return self.get_all(
            filters={'stock': ('lt', umbral)},
            order_by='stock',
            ascending=True
        )

    def get_mas_vendidos(
        self,
        limit: int = 10,
        desde: Optional[str] = None,
        hasta: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Productos ordenados por unidades vendidas.

        Args:
            limit: Cantidad de productos a devolver
            desde: Fecha/hora ISO mínima de la línea de pedido (opcional)
            hasta: Fecha/hora ISO máxima (opcional)

        Returns:
            Productos con el campo extra 'cantidad_vendida'
        """
        filtros = []
        if desde:
            filtros.append(Filtro('created_at', 'gte', desde))
        if hasta:
            filtros.append(Filtro('created_at', 'lte', hasta))

        try:
            lineas = self.gateway.select(
                'pedido_items',
                columnas='producto_id, cantidad',
                filtros=filtros
            )
        except GatewayError as e:
            self.handle_error('obtener más vendidos', e)
            return []

        vendidos: Dict[Any, int] = {}
        for linea in lineas:
            pid = linea.get('producto_id')
            if not pid:
                continue
            vendidos[pid] = vendidos.get(pid, 0) + (linea.get('cantidad') or 0)

        ranking = sorted(vendidos.items(), key=lambda kv: kv[1], reverse=True)[:limit]
        productos = {
            p['id']: p for p in self.get_by_ids(
                [pid for pid, _ in ranking],
                select_query='id, nombre, codigo, precio'
            )
        }

        resultado = []
        for pid, cantidad in ranking:
            producto = dict(productos.get(pid) or {'id': pid})
            producto['cantidad_vendida'] = cantidad
            resultado.append(producto)
        return resultado

    # =========================================================================
    # STOCK (siempre atómico)
    # =========================================================================

    def descontar_stock(self, items: Iterable[Union[StockItem, Dict[str, Any]]]) -> Dict[str, Any]:
        """
        Descuenta stock de todos los items en una sola transacción remota.

        Raises:
            ServiceError: si el backend rechaza la operación (ej. stock insuficiente)
        """
        resultado = self.rpc('descontar_stock_atomico', {'p_items': _items_para_rpc(items)})
        self.invalidate_cache()
        return verificar_resultado(resultado, 'descontar_stock_atomico', 'Error descontando stock')

    def restaurar_stock(self, items: Iterable[Union[StockItem, Dict[str, Any]]]) -> Dict[str, Any]:
        """
        Devuelve stock de todos los items en una sola transacción remota.

        Raises:
            ServiceError: si el backend rechaza la operación
        """
        resultado = self.rpc('restaurar_stock_atomico', {'p_items': _items_para_rpc(items)})
        self.invalidate_cache()
        return verificar_resultado(resultado, 'restaurar_stock_atomico', 'Error restaurando stock')

    def actualizar_stock(self, producto_id: Any, cantidad: int) -> Optional[Dict[str, Any]]:
        """
        Ajusta el stock de un producto.

        Args:
            producto_id: ID del producto
            cantidad: Positivo suma, negativo resta, cero solo lee

        Returns:
            El producto con el stock actualizado

        Raises:
            ServiceError: si el procedimiento atómico falla
        """
        if cantidad == 0:
            return self.get_by_id(producto_id)

        items = [StockItem(producto_id, abs(cantidad))]
        if cantidad < 0:
            self.descontar_stock(items)
        else:
            self.restaurar_stock(items)

        self.invalidate_cache()
        return self.get_by_id(producto_id)

    # =========================================================================
    # PRECIOS
    # =========================================================================

    def actualizar_precios_masivo(self, precios: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Actualiza precios de muchos productos en una sola transacción.

        Cada fila identifica al producto por 'producto_id' o por 'codigo'.
        Los códigos se resuelven antes con una única consulta en lote.

        Args:
            precios: Lista de {producto_id|codigo, precio_neto?, imp_internos?, precio_final?}

        Returns:
            {'actualizados': int, 'errores': [str]}

        Raises:
            ServiceError: si no se pueden resolver los códigos
        """
        filas, errores = self._resolver_codigos(precios)
        if not filas:
            return {'actualizados': 0, 'errores': errores}

        resultado = self.rpc(
            'actualizar_precios_masivo',
            {'p_productos': filas},
            fallback=lambda: self._actualizar_precios_uno_a_uno(filas)
        )
        self.invalidate_cache()
        if not isinstance(resultado, dict):
            resultado = {}
        return {
            'actualizados': resultado.get('actualizados', 0),
            'errores': errores + list(resultado.get('errores') or []),
        }

    def _resolver_codigos(self, precios: List[Dict[str, Any]]):
        """Devuelve (filas con producto_id, errores de códigos inexistentes)."""
        codigos = [p['codigo'] for p in precios if not p.get('producto_id') and p.get('codigo')]
        por_codigo: Dict[Any, Any] = {}
        if codigos:
            try:
                encontrados = seleccionar_por_ids(
                    self.gateway, self.tabla, codigos,
                    columnas='id, codigo', columna_id='codigo'
                )
            except GatewayError as e:
                self.handle_error('resolver códigos de productos', e)
                raise ServiceError(f"Error resolviendo códigos: {e.message}") from e
            por_codigo = {p['codigo']: p['id'] for p in encontrados}

        filas, errores = [], []
        for precio in precios:
            producto_id = precio.get('producto_id') or por_codigo.get(precio.get('codigo'))
            if not producto_id:
                errores.append(f"Producto {precio.get('codigo')} no encontrado")
                continue
            fila = {'producto_id': producto_id}
            fila.update({k: precio[k] for k in COLUMNAS_PRECIO if precio.get(k) is not None})
            filas.append(fila)
        return filas, errores

    def _actualizar_precios_uno_a_uno(self, filas: List[Dict[str, Any]]) -> Dict[str, Any]:
        actualizados = 0
        errores: List[str] = []

        for fila in filas:
            producto_id = fila['producto_id']
            cambios = {
                columna: fila[campo]
                for campo, columna in COLUMNAS_PRECIO.items()
                if campo in fila
            }
            try:
                if self.update(producto_id, cambios):
                    actualizados += 1
                else:
                    errores.append(f"Producto ID {producto_id} no encontrado")
            except GatewayError as e:
                errores.append(f"Error en producto ID {producto_id}: {e.message}")

        logger.info("[PRECIOS] Fallback: %s actualizados, %s errores", actualizados, len(errores))
        return {'actualizados': actualizados, 'errores': errores}

    # =========================================================================
    # VALIDACIÓN
    # =========================================================================

    def validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Valida los datos de un producto antes de guardarlo.

        Returns:
            {'valid': bool, 'errors': [str]} con todas las violaciones
        """
        errors = []

        if not str(data.get('nombre') or '').strip():
            errors.append('El nombre es requerido')

        if not str(data.get('codigo') or '').strip():
            errors.append('El código es requerido')

        for campo, mensaje in CAMPOS_NO_NEGATIVOS:
            valor = data.get(campo)
            if valor is None or valor == '':
                continue
            try:
                if float(valor) < 0:
                    errors.append(mensaje)
            except (TypeError, ValueError):
                errors.append(f"El campo {campo} debe ser numérico")

        return {'valid': len(errors) == 0, 'errors': errors}
