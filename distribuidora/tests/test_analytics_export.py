import io
from datetime import datetime, timezone

import pytest
from openpyxl import load_workbook

from distribuidora.exceptions import ServiceError
from distribuidora.services.analytics_export import (
    AnalyticsExportService,
    HOJAS,
    estado_actividad,
    formatear_fecha,
    segmento_valor,
    velocidad_venta,
)
from distribuidora.services.excel_writer import _nombre_hoja, escribir_excel_multihoja

from conftest import CLIENTES, PRODUCTOS, FakeGateway


DESDE, HASTA = '2024-03-01', '2024-03-31'


def reloj():
    return datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def gateway_bi():
    return FakeGateway({
        'productos': PRODUCTOS,
        'clientes': CLIENTES,
        'pedidos': [
            {'id': 1, 'cliente_id': 10, 'created_at': '2024-03-04T10:00:00+00:00', 'estado': 'entregado',
             'estado_pago': 'pagado', 'forma_pago': 'efectivo', 'total': 40000,
             'usuario_id': 'u1', 'transportista_id': None},
            {'id': 2, 'cliente_id': 10, 'created_at': '2024-03-20T10:00:00+00:00', 'estado': 'pendiente',
             'estado_pago': None, 'forma_pago': None, 'total': 20000,
             'usuario_id': 'u2', 'transportista_id': 't1'},
            {'id': 3, 'cliente_id': 11, 'created_at': '2024-02-10T10:00:00+00:00', 'estado': 'entregado',
             'estado_pago': 'pagado', 'forma_pago': 'efectivo', 'total': 5000,
             'usuario_id': 'u1', 'transportista_id': 't1'},
        ],
        'pedido_items': [
            {'id': 1, 'pedido_id': 1, 'producto_id': 1, 'cantidad': 20, 'precio_unitario': 1200, 'subtotal': 24000},
            {'id': 2, 'pedido_id': 1, 'producto_id': 3, 'cantidad': 10, 'precio_unitario': 0, 'subtotal': 0},
            {'id': 3, 'pedido_id': 2, 'producto_id': 1, 'cantidad': 10, 'precio_unitario': 1200, 'subtotal': None},
            {'id': 4, 'pedido_id': 3, 'producto_id': 1, 'cantidad': 99, 'precio_unitario': 1200, 'subtotal': 118800},
        ],
        'perfiles': [
            {'id': 'u1', 'nombre': 'Juan Preventista'},
            {'id': 't1', 'nombre': 'Carlos Transporte'},
        ],
        'compras': [
            {'id': 1, 'created_at': '2024-03-05T08:00:00+00:00', 'total': 15600, 'estado': 'recibida',
             'proveedor_id': 100},
        ],
        'compra_items': [
            {'id': 1, 'compra_id': 1, 'producto_id': 2, 'cantidad': 24, 'costo_unitario': 650, 'subtotal': 15600},
        ],
        'proveedores': [{'id': 100, 'nombre': 'Distribuidora Norte', 'cuit': '30-33333333-3'}],
        'pagos': [
            {'id': 1, 'created_at': '2024-03-06T15:00:00+00:00', 'cliente_id': 11, 'monto': 1500,
             'forma_pago': 'efectivo', 'referencia': None, 'notas': None, 'pedido_id': None},
            {'id': 2, 'created_at': '2024-03-07T15:00:00+00:00', 'cliente_id': 10, 'monto': 40000,
             'forma_pago': 'transferencia', 'referencia': 'TRF-1', 'notas': 'saldo', 'pedido_id': 1},
        ],
    })


@pytest.fixture
def servicio(gateway_bi):
    return AnalyticsExportService(gateway_bi, reloj=reloj)


# ------------------------------------------------------------------
# reglas de clasificación
# ------------------------------------------------------------------

@pytest.mark.parametrize('total, esperado', [
    (100000.01, 'Alto'), (100000, 'Medio'), (50000.01, 'Medio'), (50000, 'Bajo'), (0, 'Bajo'),
])
def test_segmento_valor(total, esperado):
    assert segmento_valor(total) == esperado


@pytest.mark.parametrize('dias, esperado', [
    (None, 'Nuevo'), (0, 'Activo'), (30, 'Activo'), (31, 'En riesgo'), (90, 'En riesgo'), (91, 'Inactivo'),
])
def test_estado_actividad(dias, esperado):
    assert estado_actividad(dias) == esperado


@pytest.mark.parametrize('rotacion, esperado', [
    (10.5, 'Rapida'), (10, 'Media'), (3.1, 'Media'), (3, 'Lenta'), (0, 'Lenta'),
])
def test_velocidad_venta(rotacion, esperado):
    assert velocidad_venta(rotacion) == esperado


def test_formatear_fecha():
    assert formatear_fecha('2024-03-04T10:00:00Z') == {
        'fecha': '04/03/2024', 'año': 2024, 'mes': 3, 'mes_nombre': 'marzo', 'dia_semana': 'lunes',
    }


# ------------------------------------------------------------------
# datasets
# ------------------------------------------------------------------

def test_ventas_detallado(servicio):
    filas = servicio.fetch_ventas_detallado(DESDE, HASTA)

    assert [(f['pedido_id'], f['producto_id']) for f in filas] == [(2, 1), (1, 1), (1, 3)]

    coca = filas[1]
    assert coca['fecha'] == '04/03/2024'
    assert coca['dia_semana'] == 'lunes'
    assert coca['cliente_nombre'] == 'Almacén Don Pepe'
    assert coca['cliente_zona'] == 'Centro'
    assert coca['producto_codigo'] == 'COCA-500'
    assert coca['subtotal'] == 24000
    assert coca['costo_total'] == 16940
    assert coca['margen_unitario'] == 353
    assert coca['margen_total'] == 7060
    assert coca['margen_porcentaje'] == 29.42
    assert coca['preventista'] == 'Juan Preventista'
    assert coca['transportista'] == 'Sin asignar'
    assert coca['estado_pago'] == 'pagado'


def test_ventas_subtotal_cero_margen_cero(servicio):
    papas = servicio.fetch_ventas_detallado(DESDE, HASTA)[2]
    assert papas['subtotal'] == 0
    assert papas['margen_porcentaje'] == 0
    assert papas['margen_total'] == -4840


def test_ventas_subtotal_faltante_se_calcula(servicio):
    fila = servicio.fetch_ventas_detallado(DESDE, HASTA)[0]
    assert fila['subtotal'] == 12000
    assert fila['estado_pago'] == ''
    assert fila['preventista'] == 'N/A'
    assert fila['transportista'] == 'Carlos Transporte'


def test_ventas_perfiles_caidos_no_abortan(servicio, gateway_bi):
    gateway_bi.fallar('select', 'perfiles')
    filas = servicio.fetch_ventas_detallado(DESDE, HASTA)
    assert len(filas) == 3
    assert {f['preventista'] for f in filas} == {'N/A'}
    assert {f['transportista'] for f in filas} == {'Sin asignar'}


def test_ventas_error_de_lectura_aborta(servicio, gateway_bi):
    gateway_bi.fallar('select', 'pedido_items')
    with pytest.raises(ServiceError, match='Error cargando ventas'):
        servicio.fetch_ventas_detallado(DESDE, HASTA)


def test_ventas_sin_pedidos(servicio):
    assert servicio.fetch_ventas_detallado('2023-01-01', '2023-01-31') == []


def test_clientes_dimension(servicio):
    filas = {f['id']: f for f in servicio.fetch_clientes_dimension(DESDE, HASTA)}

    pepe = filas[10]
    assert pepe['total_compras'] == 60000
    assert pepe['cantidad_pedidos'] == 2
    assert pepe['ticket_promedio'] == 30000
    assert pepe['dias_desde_ultimo_pedido'] == 11
    assert pepe['segmento_valor'] == 'Medio'
    assert pepe['estado_actividad'] == 'Activo'
    assert pepe['activo'] == 'Si'
    assert pepe['latitud'] == -26.82

    esquina = filas[11]
    assert esquina['cantidad_pedidos'] == 0
    assert esquina['ticket_promedio'] == 0
    assert esquina['dias_desde_ultimo_pedido'] == 'N/A'
    assert esquina['estado_actividad'] == 'Nuevo'
    assert esquina['segmento_valor'] == 'Bajo'
    # activo null cuenta como activo
    assert esquina['activo'] == 'Si'
    assert esquina['email'] == ''


def test_productos_dimension(servicio):
    filas = {f['id']: f for f in servicio.fetch_productos_dimension(DESDE, HASTA)}

    coca = filas[1]
    assert coca['total_vendido'] == 30
    assert coca['total_ingresos'] == 36000
    assert coca['margen_total'] == 10590
    assert coca['margen_porcentaje'] == 29.42
    assert coca['rotacion_diaria'] == 15
    assert coca['stock_dias'] == 3.3
    assert coca['velocidad_venta'] == 'Rapida'
    assert coca['estado_stock'] == 'OK'

    papas = filas[3]
    assert papas['rotacion_diaria'] == 10
    assert papas['velocidad_venta'] == 'Media'
    assert papas['margen_porcentaje'] == 0

    assert filas[2]['estado_stock'] == 'Bajo'

    alfajor = filas[4]
    assert alfajor['total_vendido'] == 0
    assert alfajor['rotacion_diaria'] == 0
    assert alfajor['stock_dias'] == 'N/A'
    assert alfajor['velocidad_venta'] == 'Lenta'
    assert alfajor['activo'] == 'No'


def test_compras_fact(servicio):
    assert servicio.fetch_compras_fact(DESDE, HASTA) == [{
        'compra_id': 1,
        'fecha': '05/03/2024',
        'proveedor_nombre': 'Distribuidora Norte',
        'proveedor_cuit': '30-33333333-3',
        'producto_nombre': 'Fanta 500ml',
        'producto_codigo': 'FANTA-500',
        'producto_categoria': 'Bebidas',
        'cantidad': 24,
        'costo_unitario': 650,
        'subtotal': 15600,
        'estado': 'recibida',
    }]


def test_cobranzas_fact(servicio):
    filas = servicio.fetch_cobranzas_fact(DESDE, HASTA)
    assert [f['pago_id'] for f in filas] == [2, 1]
    assert filas[0]['pedido_asociado'] == 1
    assert filas[0]['cliente_nombre'] == 'Almacén Don Pepe'
    assert filas[1]['pedido_asociado'] == 'N/A'
    assert filas[1]['referencia'] == ''
    assert filas[1]['cliente_zona'] == 'Norte'


def test_canasta_productos():
    gateway = FakeGateway({
        'productos': PRODUCTOS,
        'pedidos': [{'id': i, 'created_at': '2024-03-10T10:00:00'} for i in (1, 2, 3, 4)],
        'pedido_items': [
            {'pedido_id': 1, 'producto_id': 1}, {'pedido_id': 1, 'producto_id': 3},
            {'pedido_id': 2, 'producto_id': 3}, {'pedido_id': 2, 'producto_id': 1},
            {'pedido_id': 3, 'producto_id': 2},
            {'pedido_id': 4, 'producto_id': 2},
        ],
    })
    servicio = AnalyticsExportService(gateway, reloj=reloj)

    assert servicio.fetch_canasta_productos(DESDE, HASTA) == [{
        'producto_a_nombre': 'Coca Cola 500ml',
        'producto_a_codigo': 'COCA-500',
        'producto_b_nombre': 'Papas Fritas 150g',
        'producto_b_codigo': 'PAPAS-150',
        'veces_comprados_juntos': 2,
        'confianza_porcentaje': 100.0,
        'lift': 2.0,
        'recomendacion': 'Fuerte',
    }]

    gateway.fallar('select', 'productos')
    fila = servicio.fetch_canasta_productos(DESDE, HASTA)[0]
    assert fila['producto_a_nombre'] == 'Desconocido'
    assert fila['producto_b_codigo'] == ''


def test_canasta_sin_pares(servicio):
    # En marzo solo hay un par y aparece una vez
    assert servicio.fetch_canasta_productos(DESDE, HASTA) == []


# ------------------------------------------------------------------
# exportación
# ------------------------------------------------------------------

def test_exportar_bi_hojas_e_info(gateway_bi):
    capturado = {}

    def escritor(hojas, destino=None):
        capturado['hojas'] = hojas
        return b'xlsx'

    servicio = AnalyticsExportService(gateway_bi, reloj=reloj, escritor=escritor)
    resultado = servicio.exportar_bi(DESDE, HASTA)

    assert resultado['nombre_archivo'] == 'BI_Export_2024-03-01_2024-03-31.xlsx'
    assert resultado['contenido'] == b'xlsx'
    assert resultado['filas'] == {
        'Ventas_Detallado': 3, 'Clientes': 2, 'Productos': 4,
        'Compras': 1, 'Cobranzas': 2, 'Canasta_Productos': 0,
    }

    hojas = capturado['hojas']
    assert tuple(h['name'] for h in hojas) == HOJAS
    info = hojas[0]
    assert info['column_widths'] == [30, 70]
    campos = {fila['Campo']: fila['Valor'] for fila in info['data']}
    assert campos['Fecha de exportacion'] == '31/03/2024 12:00:00'
    assert campos['Periodo desde'] == DESDE
    assert campos['Filas en Ventas_Detallado'] == 3
    assert campos['Pares en Canasta'] == 0
    assert campos['Power BI - Paso 3'] == 'Crear relacion: Ventas_Detallado.cliente_id -> Clientes.id'
    assert len(info['data']) == 15


def test_exportar_bi_genera_excel_legible(servicio, tmp_path):
    destino = tmp_path / 'bi.xlsx'
    resultado = servicio.exportar_bi(DESDE, HASTA, destino=str(destino))

    assert destino.read_bytes() == resultado['contenido']
    libro = load_workbook(io.BytesIO(resultado['contenido']))
    assert tuple(libro.sheetnames) == HOJAS

    ventas = libro['Ventas_Detallado']
    encabezado = [c.value for c in ventas[1]]
    assert encabezado[:4] == ['pedido_id', 'fecha', 'año', 'mes']
    assert encabezado[-2:] == ['preventista', 'transportista']
    assert ventas.max_row == 4

    # Canasta vacía: hoja sin contenido
    assert libro['Canasta_Productos']['A1'].value is None


def test_exportar_bi_aborta_si_falla_una_consulta(servicio, gateway_bi):
    gateway_bi.fallar('select', 'pagos')
    with pytest.raises(ServiceError, match='Error cargando cobranzas'):
        servicio.exportar_bi(DESDE, HASTA)


@pytest.mark.parametrize('desde, hasta', [('01/03/2024', HASTA), (DESDE, '2024-13-01'), (None, HASTA)])
def test_exportar_bi_fechas_invalidas(servicio, gateway_bi, desde, hasta):
    with pytest.raises(ValueError):
        servicio.exportar_bi(desde, hasta)
    assert gateway_bi.llamadas == []


# ------------------------------------------------------------------
# escritor de excel
# ------------------------------------------------------------------

def test_escribir_excel_estilos_y_anchos():
    contenido = escribir_excel_multihoja([
        {'name': 'Datos', 'data': [{'a': 1, 'b': 'x'}, {'a': 2, 'b': None}], 'column_widths': [25]},
    ])
    hoja = load_workbook(io.BytesIO(contenido))['Datos']

    assert [c.value for c in hoja[1]] == ['a', 'b']
    assert hoja['A1'].font.bold is True
    assert hoja['A1'].fill.fgColor.rgb.endswith('E0E0E0')
    assert hoja.column_dimensions['A'].width == 25
    assert hoja.column_dimensions['B'].width == 15
    assert hoja['A3'].value == 2


def test_nombre_de_hoja_valido():
    assert _nombre_hoja('Ventas/2024:[x]') == 'Ventas2024x'
    assert len(_nombre_hoja('x' * 40)) == 31
    assert _nombre_hoja('[]') == 'Hoja'
