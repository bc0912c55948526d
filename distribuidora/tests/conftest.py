import copy
import re

import pytest

from distribuidora import performance_logger
from distribuidora.app_container import AppContainer
from distribuidora.config import Settings
from distribuidora.exceptions import GatewayError
from distribuidora.repositories.filtros import FiltroOr
from distribuidora.services.base_service import invalidate_all_cache


# ==============================================================================
# GATEWAY EN MEMORIA
# ==============================================================================

def _patron_like(patron, ignorar_mayusculas):
    regex = '.*'.join(re.escape(parte) for parte in str(patron).split('%'))
    return re.compile(regex, re.IGNORECASE if ignorar_mayusculas else 0)


def _cumple(fila, filtro):
    if isinstance(filtro, FiltroOr):
        return any(_cumple(fila, c) for c in filtro.condiciones)

    valor = fila.get(filtro.columna)
    op, esperado = filtro.operador, filtro.valor

    if op == 'eq':
        return valor == esperado
    if op == 'neq':
        return valor != esperado
    if op == 'in':
        return valor in list(esperado)
    if op == 'is':
        return valor is esperado
    if op in ('like', 'ilike'):
        if valor is None:
            return False
        return _patron_like(esperado, op == 'ilike').fullmatch(str(valor)) is not None
    if valor is None:
        return False
    if op == 'gt':
        return valor > esperado
    if op == 'gte':
        return valor >= esperado
    if op == 'lt':
        return valor < esperado
    if op == 'lte':
        return valor <= esperado
    raise AssertionError(f"operador no soportado en el fake: {op}")


def _proyectar(fila, columnas):
    if not columnas or columnas.strip() == '*':
        return copy.deepcopy(fila)
    nombres = [c.strip() for c in columnas.split(',') if c.strip()]
    return {n: copy.deepcopy(fila.get(n)) for n in nombres}


class FakeGateway:
    """
    Implementación en memoria del gateway.

    - tablas: {nombre: [filas]}
    - rpc_handlers: {nombre: función(params) -> respuesta}
    - fallar(operacion, tabla): la próxima llamada que coincida lanza GatewayError
    """

    def __init__(self, tablas=None):
        self.tablas = {nombre: [dict(f) for f in filas] for nombre, filas in (tablas or {}).items()}
        self.rpc_handlers = {}
        self.rpc_calls = []
        self.llamadas = []
        self._fallas = {}

    # -- helpers de test -----------------------------------------------------

    def fallar(self, operacion, tabla=None, error=None, siempre=True):
        self._fallas[(operacion, tabla)] = (error or GatewayError('falla simulada', code='XX000'), siempre)

    def filas(self, tabla):
        return self.tablas.setdefault(tabla, [])

    def _verificar_falla(self, operacion, tabla):
        for clave in ((operacion, tabla), (operacion, None)):
            if clave in self._fallas:
                error, siempre = self._fallas[clave]
                if not siempre:
                    del self._fallas[clave]
                raise error

    def _siguiente_id(self, tabla):
        ids = [f.get('id') for f in self.filas(tabla) if isinstance(f.get('id'), int)]
        return max(ids, default=0) + 1

    # -- protocolo ------------------------------------------------------------

    def select(self, tabla, columnas='*', filtros=None, order_by=None, ascending=True,
               limit=None, offset=None):
        self.llamadas.append(('select', tabla))
        self._verificar_falla('select', tabla)

        filas = [f for f in self.filas(tabla) if all(_cumple(f, c) for c in filtros or [])]
        if order_by:
            presentes = [f for f in filas if f.get(order_by) is not None]
            nulos = [f for f in filas if f.get(order_by) is None]
            presentes.sort(key=lambda f: f[order_by], reverse=not ascending)
            filas = presentes + nulos
        if offset:
            filas = filas[offset:]
        if limit is not None:
            filas = filas[:limit]
        return [_proyectar(f, columnas) for f in filas]

    def insert(self, tabla, filas):
        self.llamadas.append(('insert', tabla))
        self._verificar_falla('insert', tabla)

        creadas = []
        for fila in filas:
            fila = dict(fila)
            if fila.get('id') is None:
                fila['id'] = self._siguiente_id(tabla)
            self.filas(tabla).append(fila)
            creadas.append(copy.deepcopy(fila))
        return creadas

    def update(self, tabla, valores, filtros):
        self.llamadas.append(('update', tabla))
        self._verificar_falla('update', tabla)

        actualizadas = []
        for fila in self.filas(tabla):
            if all(_cumple(fila, c) for c in filtros):
                fila.update(valores)
                actualizadas.append(copy.deepcopy(fila))
        return actualizadas

    def delete(self, tabla, filtros):
        self.llamadas.append(('delete', tabla))
        self._verificar_falla('delete', tabla)
        self.tablas[tabla] = [
            f for f in self.filas(tabla) if not all(_cumple(f, c) for c in filtros)
        ]

    def count(self, tabla, filtros=None):
        self.llamadas.append(('count', tabla))
        self._verificar_falla('count', tabla)
        return len([f for f in self.filas(tabla) if all(_cumple(f, c) for c in filtros or [])])

    def rpc(self, nombre, params=None):
        self.rpc_calls.append((nombre, copy.deepcopy(params)))
        self._verificar_falla('rpc', nombre)
        handler = self.rpc_handlers.get(nombre)
        if handler is None:
            raise GatewayError(
                f"Could not find the function public.{nombre}",
                code='PGRST202',
                status=404
            )
        return handler(params or {})

    def rpcs_llamadas(self, nombre):
        return [p for n, p in self.rpc_calls if n == nombre]


# ==============================================================================
# PROCEDIMIENTOS DE STOCK SIMULADOS
# ==============================================================================

def instalar_rpcs_stock(gateway):
    """Descontar/restaurar todo o nada, como los procedimientos reales."""

    def _producto(producto_id):
        for p in gateway.filas('productos'):
            if p['id'] == producto_id:
                return p
        return None

    def descontar(params):
        errores = []
        for item in params['p_items']:
            producto = _producto(item['producto_id'])
            if producto is None:
                errores.append(f"Producto {item['producto_id']} no encontrado")
            elif (producto.get('stock') or 0) < item['cantidad']:
                errores.append(
                    f"Stock insuficiente para {producto['nombre']}: "
                    f"disponible {producto.get('stock')}, solicitado {item['cantidad']}"
                )
        if errores:
            return {'success': False, 'errores': errores}
        for item in params['p_items']:
            _producto(item['producto_id'])['stock'] -= item['cantidad']
        return {'success': True}

    def restaurar(params):
        for item in params['p_items']:
            producto = _producto(item['producto_id'])
            if producto is None:
                return {'success': False, 'errores': [f"Producto {item['producto_id']} no encontrado"]}
        for item in params['p_items']:
            _producto(item['producto_id'])['stock'] += item['cantidad']
        return {'success': True}

    gateway.rpc_handlers['descontar_stock_atomico'] = descontar
    gateway.rpc_handlers['restaurar_stock_atomico'] = restaurar
    return gateway


def instalar_rpc_orden_entrega(gateway):
    """Como la versión JSONB del procedimiento: lee item['orden'] de cada elemento."""

    def actualizar(params):
        for item in params['ordenes']:
            for pedido in gateway.filas('pedidos'):
                if pedido['id'] == item.get('pedido_id'):
                    pedido['orden_entrega'] = item.get('orden')
        return None

    gateway.rpc_handlers['actualizar_orden_entrega_batch'] = actualizar
    return gateway


# ==============================================================================
# FIXTURES
# ==============================================================================

PRODUCTOS = [
    {'id': 1, 'codigo': 'COCA-500', 'nombre': 'Coca Cola 500ml', 'categoria': 'Bebidas',
     'precio': 1200, 'stock': 50, 'stock_minimo': 10, 'costo_sin_iva': 700,
     'costo_con_iva': 847, 'activo': True},
    {'id': 2, 'codigo': 'FANTA-500', 'nombre': 'Fanta 500ml', 'categoria': 'Bebidas',
     'precio': 1100, 'stock': 5, 'stock_minimo': 10, 'costo_sin_iva': 650,
     'costo_con_iva': 786.5, 'activo': True},
    {'id': 3, 'codigo': 'PAPAS-150', 'nombre': 'Papas Fritas 150g', 'categoria': 'Snacks',
     'precio': 900, 'stock': 20, 'stock_minimo': 5, 'costo_sin_iva': 400,
     'costo_con_iva': 484, 'activo': True},
    {'id': 4, 'codigo': 'ALFA-X', 'nombre': 'Alfajor Triple', 'categoria': 'Golosinas',
     'precio': 600, 'stock': 0, 'stock_minimo': 12, 'costo_sin_iva': 300,
     'costo_con_iva': 363, 'activo': False},
]

CLIENTES = [
    {'id': 10, 'nombre_fantasia': 'Almacén Don Pepe', 'razon_social': 'Pepe SRL',
     'cuit': '30-11111111-1', 'direccion': 'San Martín 123', 'telefono': '3814000000',
     'email': 'pepe@example.com', 'zona': 'Centro', 'latitud': -26.82, 'longitud': -65.2,
     'limite_credito': 50000, 'saldo_cuenta': 0, 'activo': True},
    {'id': 11, 'nombre_fantasia': 'Kiosco La Esquina', 'razon_social': 'Esquina SA',
     'cuit': '30-22222222-2', 'direccion': 'Belgrano 456', 'telefono': None,
     'email': None, 'zona': 'Norte', 'latitud': None, 'longitud': None,
     'limite_credito': 0, 'saldo_cuenta': 1500, 'activo': None},
]


@pytest.fixture(autouse=True)
def _aislar_estado_global(tmp_path):
    """Caché, contenedor y carpeta de logs limpios en cada test."""
    invalidate_all_cache()
    AppContainer.reset_instance()
    logs_anterior = performance_logger.LOGS_DIR
    performance_logger.set_logs_dir(str(tmp_path / 'logs'))
    yield
    performance_logger.set_logs_dir(logs_anterior)
    AppContainer.reset_instance()
    invalidate_all_cache()


@pytest.fixture
def gateway():
    return instalar_rpcs_stock(FakeGateway({
        'productos': PRODUCTOS,
        'clientes': CLIENTES,
        'pedidos': [],
        'pedido_items': [],
        'pedido_historial': [],
        'mermas_stock': [],
    }))


@pytest.fixture
def settings():
    return Settings(supabase_url='https://test.supabase.co', supabase_key='test-key')


@pytest.fixture
def container(gateway, settings):
    return AppContainer(settings=settings, gateway=gateway)
