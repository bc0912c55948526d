# ==============================================================================
# EXPORTACIÓN ANALÍTICA (BI)
# ==============================================================================
# Genera datasets denormalizados listos para Power BI y los escribe en un
# Excel de 7 hojas. Cada fetch_* devuelve una lista de dicts planos
# (una fila = un registro).
#
# Las relaciones se resuelven con búsquedas en lote "id in (...)" por tabla
# relacionada: nunca una consulta por fila.
#
# Política de errores: cualquier fallo al leer una tabla principal lanza
# ServiceError y aborta la exportación. Las búsquedas de nombres (perfiles
# del personal, nombres de productos de la canasta) degradan a valores
# por defecto.
# ==============================================================================

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from distribuidora.exceptions import GatewayError, ServiceError
from distribuidora.performance_logger import profile_function
from distribuidora.repositories.filtros import Filtro
from distribuidora.repositories.interfaces import IGateway
from distribuidora.services.base_service import seleccionar_por_ids
from distribuidora.services.excel_writer import escribir_excel_multihoja
from distribuidora.services.market_basket import calcular_canasta, recomendacion


logger = logging.getLogger(__name__)

# Soporte mínimo para que un par entre en la hoja de canasta
SOPORTE_MINIMO_CANASTA = 2

MESES = [
    'enero', 'febrero', 'marzo', 'abril', 'mayo', 'junio',
    'julio', 'agosto', 'septiembre', 'octubre', 'noviembre', 'diciembre',
]
DIAS_SEMANA = ['lunes', 'martes', 'miércoles', 'jueves', 'viernes', 'sábado', 'domingo']

HOJAS = (
    'Info_Exportacion',
    'Ventas_Detallado',
    'Clientes',
    'Productos',
    'Compras',
    'Cobranzas',
    'Canasta_Productos',
)

INSTRUCCIONES_POWER_BI = (
    ('Power BI - Paso 1', 'Obtener datos > Excel > seleccionar este archivo'),
    ('Power BI - Paso 2', 'Importar todas las hojas excepto Info_Exportacion'),
    ('Power BI - Paso 3', 'Crear relacion: Ventas_Detallado.cliente_id -> Clientes.id'),
    ('Power BI - Paso 4', 'Crear relacion: Ventas_Detallado.producto_id -> Productos.id'),
    ('Power BI - Paso 5', 'Usar Clientes.latitud/longitud para mapa de calor'),
)


# ==============================================================================
# HELPERS
# ==============================================================================

def parse_timestamp(valor: Any) -> datetime:
    """Timestamp ISO del backend → datetime con zona (UTC si no trae)."""
    if isinstance(valor, datetime):
        dt = valor
    else:
        dt = datetime.fromisoformat(str(valor).replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def formatear_fecha(valor: Any) -> Dict[str, Any]:
    """Campos de fecha que usan las tablas de hechos."""
    dt = parse_timestamp(valor)
    return {
        'fecha': dt.strftime('%d/%m/%Y'),
        'año': dt.year,
        'mes': dt.month,
        'mes_nombre': MESES[dt.month - 1],
        'dia_semana': DIAS_SEMANA[dt.weekday()],
    }


def _valor(valor: Any, default: Any = '') -> Any:
    return default if valor is None else valor


def _numero(valor: Any) -> float:
    try:
        return float(valor or 0)
    except (TypeError, ValueError):
        return 0.0


def segmento_valor(total_compras: float) -> str:
    if total_compras > 100000:
        return 'Alto'
    if total_compras > 50000:
        return 'Medio'
    return 'Bajo'


def estado_actividad(dias_desde_ultimo: Optional[int]) -> str:
    if dias_desde_ultimo is None:
        return 'Nuevo'
    if dias_desde_ultimo > 90:
        return 'Inactivo'
    if dias_desde_ultimo > 30:
        return 'En riesgo'
    return 'Activo'


def velocidad_venta(rotacion: float) -> str:
    if rotacion > 10:
        return 'Rapida'
    if rotacion > 3:
        return 'Media'
    return 'Lenta'


def _por_id(filas: Iterable[Dict[str, Any]], clave: str = 'id') -> Dict[Any, Dict[str, Any]]:
    return {f[clave]: f for f in filas}


def _agrupar(filas: Iterable[Dict[str, Any]], clave: str) -> Dict[Any, List[Dict[str, Any]]]:
    grupos: Dict[Any, List[Dict[str, Any]]] = {}
    for fila in filas:
        grupos.setdefault(fila.get(clave), []).append(fila)
    return grupos


def _validar_fecha(valor: str, campo: str) -> None:
    try:
        datetime.strptime(valor, '%Y-%m-%d')
    except (TypeError, ValueError):
        raise ValueError(f"{campo} debe tener formato YYYY-MM-DD: {valor!r}")


# ==============================================================================
# SERVICIO
# ==============================================================================

class AnalyticsExportService:
    """
    Exportación de datasets para BI.

    Uso:
        servicio = AnalyticsExportService(gateway)
        resultado = servicio.exportar_bi('2024-01-01', '2024-01-31')
        open(resultado['nombre_archivo'], 'wb').write(resultado['contenido'])
    """

    def __init__(
        self,
        gateway: IGateway,
        reloj: Callable[[], datetime] = None,
        escritor: Callable[..., bytes] = escribir_excel_multihoja,
        max_workers: int = 6
    ):
        """
        Args:
            gateway: Acceso al backend
            reloj: Función que devuelve "ahora" con zona (default UTC real)
            escritor: Función que escribe las hojas y devuelve los bytes
            max_workers: Hilos para las consultas en paralelo
        """
        self.gateway = gateway
        self.reloj = reloj or (lambda: datetime.now(timezone.utc))
        self.escritor = escritor
        self.max_workers = max_workers

    # =========================================================================
    # ACCESO A DATOS
    # =========================================================================

    @staticmethod
    def _rango(desde: str, hasta: str, columna: str = 'created_at') -> List[Filtro]:
        return [
            Filtro(columna, 'gte', f"{desde}T00:00:00"),
            Filtro(columna, 'lte', f"{hasta}T23:59:59"),
        ]

    def _select(self, dataset: str, tabla: str, **kwargs) -> List[Dict[str, Any]]:
        try:
            return self.gateway.select(tabla, **kwargs)
        except GatewayError as e:
            raise ServiceError(f"Error cargando {dataset}: {e.message}") from e

    def _por_ids(self, dataset: str, tabla: str, ids, columnas: str, columna_id: str = 'id'):
        try:
            return seleccionar_por_ids(self.gateway, tabla, ids, columnas=columnas, columna_id=columna_id)
        except GatewayError as e:
            raise ServiceError(f"Error cargando {dataset}: {e.message}") from e

    def _nombres_perfiles(self, ids: Iterable[Any]) -> Dict[Any, str]:
        try:
            perfiles = seleccionar_por_ids(self.gateway, 'perfiles', ids, columnas='id, nombre')
        except GatewayError as e:
            logger.warning("[BI] No se pudieron cargar perfiles: %s", e)
            return {}
        return {p['id']: p.get('nombre') for p in perfiles}

    # =========================================================================
    # DATASET 1: VENTAS DETALLADO (hechos)
    # =========================================================================

    def fetch_ventas_detallado(self, desde: str, hasta: str) -> List[Dict[str, Any]]:
        """Una fila por línea de pedido con cliente, producto, personal y margen."""
        pedidos = self._select(
            'ventas', 'pedidos',
            columnas='id, created_at, estado, estado_pago, forma_pago, total, '
                     'usuario_id, transportista_id, cliente_id',
            filtros=self._rango(desde, hasta),
            order_by='created_at',
            ascending=False
        )
        if not pedidos:
            return []

        items = _agrupar(self._por_ids(
            'ventas', 'pedido_items', [p['id'] for p in pedidos],
            columnas='id, pedido_id, producto_id, cantidad, precio_unitario, subtotal',
            columna_id='pedido_id'
        ), 'pedido_id')
        clientes = _por_id(self._por_ids(
            'ventas', 'clientes', [p.get('cliente_id') for p in pedidos],
            columnas='id, nombre_fantasia, razon_social, zona, cuit'
        ))
        productos = _por_id(self._por_ids(
            'ventas', 'productos',
            [i.get('producto_id') for lineas in items.values() for i in lineas],
            columnas='id, nombre, codigo, categoria, costo_con_iva'
        ))
        perfiles = self._nombres_perfiles(
            [p.get('usuario_id') for p in pedidos] + [p.get('transportista_id') for p in pedidos]
        )

        filas = []
        for pedido in pedidos:
            cliente = clientes.get(pedido.get('cliente_id')) or {}
            fecha = formatear_fecha(pedido['created_at'])

            for item in items.get(pedido['id'], []):
                producto = productos.get(item.get('producto_id')) or {}
                costo_unitario = _numero(producto.get('costo_con_iva'))
                precio_unitario = _numero(item.get('precio_unitario'))
                cantidad = _numero(item.get('cantidad'))
                subtotal = _numero(item.get('subtotal')) or precio_unitario * cantidad
                costo_total = costo_unitario * cantidad
                margen_total = subtotal - costo_total

                filas.append({
                    'pedido_id': pedido['id'],
                    **fecha,
                    'cliente_id': _valor(cliente.get('id')),
                    'cliente_nombre': _valor(cliente.get('nombre_fantasia')),
                    'cliente_zona': _valor(cliente.get('zona')),
                    'cliente_cuit': _valor(cliente.get('cuit')),
                    'producto_id': _valor(producto.get('id')),
                    'producto_nombre': _valor(producto.get('nombre')),
                    'producto_codigo': _valor(producto.get('codigo')),
                    'producto_categoria': _valor(producto.get('categoria')),
                    'cantidad': cantidad,
                    'precio_unitario': precio_unitario,
                    'subtotal': subtotal,
                    'costo_unitario': costo_unitario,
                    'costo_total': costo_total,
                    'margen_unitario': precio_unitario - costo_unitario,
                    'margen_total': margen_total,
                    'margen_porcentaje': round(margen_total / subtotal * 100, 2) if subtotal > 0 else 0,
                    'estado_pedido': pedido.get('estado'),
                    'estado_pago': _valor(pedido.get('estado_pago')),
                    'forma_pago': _valor(pedido.get('forma_pago')),
                    'preventista': perfiles.get(pedido.get('usuario_id')) or 'N/A',
                    'transportista': perfiles.get(pedido.get('transportista_id')) or 'Sin asignar',
                })

        return filas

    # =========================================================================
    # DATASET 2: CLIENTES (dimensión)
    # =========================================================================

    def fetch_clientes_dimension(self, desde: str, hasta: str) -> List[Dict[str, Any]]:
        """Clientes con métricas de compra del período, segmento y actividad."""
        clientes = self._select('clientes', 'clientes', columnas='*')
        pedidos = _agrupar(self._select(
            'clientes', 'pedidos',
            columnas='id, cliente_id, total, created_at',
            filtros=self._rango(desde, hasta)
        ), 'cliente_id')

        ahora = self.reloj()
        filas = []
        for c in clientes:
            propios = pedidos.get(c['id'], [])
            total_compras = sum(_numero(p.get('total')) for p in propios)
            cantidad_pedidos = len(propios)

            dias_desde_ultimo = None
            if propios:
                ultimo = max(parse_timestamp(p['created_at']) for p in propios)
                dias_desde_ultimo = int((ahora - ultimo).total_seconds() // 86400)

            filas.append({
                'id': c['id'],
                'nombre_fantasia': _valor(c.get('nombre_fantasia')),
                'razon_social': _valor(c.get('razon_social')),
                'cuit': _valor(c.get('cuit')),
                'direccion': _valor(c.get('direccion')),
                'telefono': _valor(c.get('telefono')),
                'email': _valor(c.get('email')),
                'zona': _valor(c.get('zona')),
                'latitud': _valor(c.get('latitud')),
                'longitud': _valor(c.get('longitud')),
                'limite_credito': _valor(c.get('limite_credito'), 0),
                'saldo_cuenta': _valor(c.get('saldo_cuenta'), 0),
                'activo': 'No' if c.get('activo') is False else 'Si',
                'total_compras': total_compras,
                'cantidad_pedidos': cantidad_pedidos,
                'ticket_promedio': round(total_compras / cantidad_pedidos, 2) if cantidad_pedidos else 0,
                'dias_desde_ultimo_pedido': 'N/A' if dias_desde_ultimo is None else dias_desde_ultimo,
                'segmento_valor': segmento_valor(total_compras),
                'estado_actividad': estado_actividad(dias_desde_ultimo),
            })
        return filas

    # =========================================================================
    # DATASET 3: PRODUCTOS (dimensión)
    # =========================================================================

    def fetch_productos_dimension(self, desde: str, hasta: str) -> List[Dict[str, Any]]:
        """Productos con ventas del período, rotación, cobertura y velocidad."""
        productos = self._select('productos', 'productos', columnas='*')
        pedidos = self._select(
            'productos', 'pedidos',
            columnas='id, created_at',
            filtros=self._rango(desde, hasta)
        )
        dia_por_pedido = {p['id']: str(p['created_at']).split('T')[0] for p in pedidos}
        items = self._por_ids(
            'productos', 'pedido_items', list(dia_por_pedido),
            columnas='pedido_id, producto_id, cantidad, precio_unitario, subtotal',
            columna_id='pedido_id'
        )

        ventas: Dict[Any, Dict[str, Any]] = {}
        for item in items:
            acumulado = ventas.setdefault(
                item.get('producto_id'), {'cantidad': 0, 'ingresos': 0.0, 'dias': set()}
            )
            cantidad = _numero(item.get('cantidad'))
            acumulado['cantidad'] += cantidad
            acumulado['ingresos'] += (
                _numero(item.get('subtotal')) or _numero(item.get('precio_unitario')) * cantidad
            )
            dia = dia_por_pedido.get(item.get('pedido_id'))
            if dia:
                acumulado['dias'].add(dia)

        filas = []
        for p in productos:
            venta = ventas.get(p['id']) or {'cantidad': 0, 'ingresos': 0.0, 'dias': set()}
            costo_unitario = _numero(p.get('costo_con_iva'))
            margen_total = venta['ingresos'] - costo_unitario * venta['cantidad']

            dias_con_ventas = len(venta['dias'])
            rotacion = venta['cantidad'] / dias_con_ventas if dias_con_ventas else 0
            stock = p.get('stock') or 0
            stock_dias = stock / rotacion if rotacion > 0 else None

            filas.append({
                'id': p['id'],
                'codigo': _valor(p.get('codigo')),
                'nombre': p.get('nombre'),
                'categoria': _valor(p.get('categoria')),
                'precio': p.get('precio'),
                'stock': _valor(p.get('stock'), 0),
                'stock_minimo': _valor(p.get('stock_minimo'), 0),
                'costo_sin_iva': _valor(p.get('costo_sin_iva'), 0),
                'costo_con_iva': _valor(p.get('costo_con_iva'), 0),
                'activo': 'No' if p.get('activo') is False else 'Si',
                'total_vendido': venta['cantidad'],
                'total_ingresos': round(venta['ingresos'], 2),
                'margen_total': round(margen_total, 2),
                'margen_porcentaje': (
                    round(margen_total / venta['ingresos'] * 100, 2) if venta['ingresos'] > 0 else 0
                ),
                'rotacion_diaria': round(rotacion, 2),
                'stock_dias': 'N/A' if stock_dias is None or stock_dias >= 999 else round(stock_dias, 1),
                'estado_stock': 'Bajo' if stock <= (p.get('stock_minimo') or 0) else 'OK',
                'velocidad_venta': velocidad_venta(rotacion),
            })
        return filas

    # =========================================================================
    # DATASET 4: COMPRAS (hechos)
    # =========================================================================

    def fetch_compras_fact(self, desde: str, hasta: str) -> List[Dict[str, Any]]:
        """Una fila por línea de compra a proveedor."""
        compras = self._select(
            'compras', 'compras',
            columnas='id, created_at, total, estado, proveedor_id',
            filtros=self._rango(desde, hasta),
            order_by='created_at',
            ascending=False
        )
        if not compras:
            return []

        items = _agrupar(self._por_ids(
            'compras', 'compra_items', [c['id'] for c in compras],
            columnas='compra_id, producto_id, cantidad, costo_unitario, subtotal',
            columna_id='compra_id'
        ), 'compra_id')
        proveedores = _por_id(self._por_ids(
            'compras', 'proveedores', [c.get('proveedor_id') for c in compras],
            columnas='id, nombre, cuit'
        ))
        productos = _por_id(self._por_ids(
            'compras', 'productos',
            [i.get('producto_id') for lineas in items.values() for i in lineas],
            columnas='id, nombre, codigo, categoria'
        ))

        filas = []
        for compra in compras:
            proveedor = proveedores.get(compra.get('proveedor_id')) or {}
            fecha = formatear_fecha(compra['created_at'])['fecha']
            for item in items.get(compra['id'], []):
                producto = productos.get(item.get('producto_id')) or {}
                filas.append({
                    'compra_id': compra['id'],
                    'fecha': fecha,
                    'proveedor_nombre': _valor(proveedor.get('nombre')),
                    'proveedor_cuit': _valor(proveedor.get('cuit')),
                    'producto_nombre': _valor(producto.get('nombre')),
                    'producto_codigo': _valor(producto.get('codigo')),
                    'producto_categoria': _valor(producto.get('categoria')),
                    'cantidad': item.get('cantidad'),
                    'costo_unitario': item.get('costo_unitario'),
                    'subtotal': item.get('subtotal'),
                    'estado': _valor(compra.get('estado')),
                })
        return filas

    # =========================================================================
    # DATASET 5: COBRANZAS (hechos)
    # =========================================================================

    def fetch_cobranzas_fact(self, desde: str, hasta: str) -> List[Dict[str, Any]]:
        """Una fila por pago recibido."""
        pagos = self._select(
            'cobranzas', 'pagos',
            columnas='id, created_at, monto, forma_pago, referencia, notas, cliente_id, pedido_id',
            filtros=self._rango(desde, hasta),
            order_by='created_at',
            ascending=False
        )
        clientes = _por_id(self._por_ids(
            'cobranzas', 'clientes', [p.get('cliente_id') for p in pagos],
            columnas='id, nombre_fantasia, zona'
        ))

        filas = []
        for pago in pagos:
            cliente = clientes.get(pago.get('cliente_id')) or {}
            filas.append({
                'pago_id': pago['id'],
                'fecha': formatear_fecha(pago['created_at'])['fecha'],
                'cliente_id': _valor(cliente.get('id')),
                'cliente_nombre': _valor(cliente.get('nombre_fantasia')),
                'cliente_zona': _valor(cliente.get('zona')),
                'monto': pago.get('monto'),
                'forma_pago': _valor(pago.get('forma_pago')),
                'referencia': _valor(pago.get('referencia')),
                'notas': _valor(pago.get('notas')),
                'pedido_asociado': _valor(pago.get('pedido_id'), 'N/A'),
            })
        return filas

    # =========================================================================
    # DATASET 6: CANASTA DE PRODUCTOS
    # =========================================================================

    def fetch_canasta_productos(self, desde: str, hasta: str) -> List[Dict[str, Any]]:
        """Pares de productos comprados juntos con confianza, lift y recomendación."""
        pedidos = self._select(
            'pedidos para canasta', 'pedidos',
            columnas='id',
            filtros=self._rango(desde, hasta)
        )
        if not pedidos:
            return []

        items = _agrupar(self._por_ids(
            'pedidos para canasta', 'pedido_items', [p['id'] for p in pedidos],
            columnas='pedido_id, producto_id',
            columna_id='pedido_id'
        ), 'pedido_id')

        pares = calcular_canasta(
            [{'items': items.get(p['id'], [])} for p in pedidos],
            min_support=SOPORTE_MINIMO_CANASTA
        )
        if not pares:
            return []

        ids = [p['producto_a'] for p in pares] + [p['producto_b'] for p in pares]
        try:
            nombres = _por_id(seleccionar_por_ids(
                self.gateway, 'productos', ids, columnas='id, nombre, codigo'
            ))
        except GatewayError as e:
            logger.warning("[BI] No se pudieron cargar nombres de productos: %s", e)
            nombres = {}

        filas = []
        for par in pares:
            a = nombres.get(par['producto_a']) or {}
            b = nombres.get(par['producto_b']) or {}
            filas.append({
                'producto_a_nombre': a.get('nombre') or 'Desconocido',
                'producto_a_codigo': a.get('codigo') or '',
                'producto_b_nombre': b.get('nombre') or 'Desconocido',
                'producto_b_codigo': b.get('codigo') or '',
                'veces_comprados_juntos': par['frecuencia'],
                'confianza_porcentaje': round(par['confianza'], 1),
                'lift': round(par['lift'], 2),
                'recomendacion': recomendacion(par['lift']),
            })
        return filas

    # =========================================================================
    # ORQUESTADOR
    # =========================================================================

    def _info_exportacion(self, desde: str, hasta: str, conteos: Dict[str, int]) -> List[Dict[str, Any]]:
        info = [
            {'Campo': 'Fecha de exportacion', 'Valor': self.reloj().strftime('%d/%m/%Y %H:%M:%S')},
            {'Campo': 'Periodo desde', 'Valor': desde},
            {'Campo': 'Periodo hasta', 'Valor': hasta},
            {'Campo': 'Filas en Ventas_Detallado', 'Valor': conteos['Ventas_Detallado']},
            {'Campo': 'Total Clientes', 'Valor': conteos['Clientes']},
            {'Campo': 'Total Productos', 'Valor': conteos['Productos']},
            {'Campo': 'Filas en Compras', 'Valor': conteos['Compras']},
            {'Campo': 'Filas en Cobranzas', 'Valor': conteos['Cobranzas']},
            {'Campo': 'Pares en Canasta', 'Valor': conteos['Canasta_Productos']},
            {'Campo': '', 'Valor': ''},
        ]
        info.extend({'Campo': campo, 'Valor': valor} for campo, valor in INSTRUCCIONES_POWER_BI)
        return info

    @profile_function(name="Exportar BI")
    def exportar_bi(self, desde: str, hasta: str, destino: Optional[str] = None) -> Dict[str, Any]:
        """
        Genera el Excel de BI para el período.

        Las seis consultas corren en paralelo; si cualquiera falla, la
        exportación se aborta con ese error.

        Args:
            desde: Fecha inicial YYYY-MM-DD
            hasta: Fecha final YYYY-MM-DD (inclusive)
            destino: Ruta donde guardar el archivo (opcional)

        Returns:
            {'nombre_archivo', 'contenido' (bytes), 'filas': {hoja: cantidad}}

        Raises:
            ValueError: fechas con formato inválido
            ServiceError: falló alguna consulta
        """
        _validar_fecha(desde, 'desde')
        _validar_fecha(hasta, 'hasta')

        fuentes = (
            ('Ventas_Detallado', self.fetch_ventas_detallado),
            ('Clientes', self.fetch_clientes_dimension),
            ('Productos', self.fetch_productos_dimension),
            ('Compras', self.fetch_compras_fact),
            ('Cobranzas', self.fetch_cobranzas_fact),
            ('Canasta_Productos', self.fetch_canasta_productos),
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futuros = [(hoja, executor.submit(fetch, desde, hasta)) for hoja, fetch in fuentes]
            datasets = {hoja: futuro.result() for hoja, futuro in futuros}

        conteos = {hoja: len(data) for hoja, data in datasets.items()}
        hojas = [{
            'name': 'Info_Exportacion',
            'data': self._info_exportacion(desde, hasta, conteos),
            'column_widths': [30, 70],
        }]
        hojas.extend({'name': hoja, 'data': datasets[hoja]} for hoja, _ in fuentes)

        contenido = self.escritor(hojas, destino)
        nombre_archivo = f"BI_Export_{desde}_{hasta}.xlsx"
        logger.info("[BI] %s generado: %s", nombre_archivo, conteos)

        return {
            'nombre_archivo': nombre_archivo,
            'contenido': contenido,
            'filas': conteos,
        }
