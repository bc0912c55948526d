import json

import pytest
import requests

from distribuidora.exceptions import GatewayError
from distribuidora.repositories.filtros import (
    Filtro,
    FiltroOr,
    contiene,
    escapar_termino,
    normalizar_filtros,
)
from distribuidora.repositories.postgrest_gateway import PostgrestGateway, construir_params


def _response(status=200, body=None, headers=None):
    r = requests.Response()
    r.status_code = status
    r._content = b'' if body is None else json.dumps(body).encode('utf-8')
    r.headers.update(headers or {})
    r.reason = 'OK' if status < 400 else 'Error'
    return r


class FakeSession:
    def __init__(self, respuestas=None, error=None):
        self.headers = {}
        self.respuestas = list(respuestas or [])
        self.error = error
        self.requests = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.requests.append({
            'method': method, 'url': url, 'params': params,
            'json': json, 'headers': headers, 'timeout': timeout,
        })
        if self.error:
            raise self.error
        return self.respuestas.pop(0) if self.respuestas else _response()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def gw(session):
    return PostgrestGateway('https://demo.supabase.co/', 'clave', timeout=5, session=session)


# ------------------------------------------------------------------
# filtros
# ------------------------------------------------------------------

def test_normalizar_filtros_dict_ignora_vacios_y_acepta_operadores():
    filtros = normalizar_filtros({'zona': 'Centro', 'stock': ('lt', 10), 'email': None, 'cuit': ''})
    assert filtros == [Filtro('zona', 'eq', 'Centro'), Filtro('stock', 'lt', 10)]


def test_normalizar_filtros_conserva_is_null():
    esperado = [Filtro('transportista_id', 'is', None)]
    assert normalizar_filtros({'transportista_id': ('is', None)}) == esperado
    assert normalizar_filtros([Filtro('transportista_id', 'is', None)]) == esperado
    assert construir_params(normalizar_filtros({'transportista_id': ('is', None)})) == [
        ('transportista_id', 'is.null')
    ]


def test_normalizar_filtros_operador_desconocido():
    with pytest.raises(ValueError):
        normalizar_filtros([Filtro('stock', 'between', 3)])


def test_escapar_termino_quita_sintaxis_de_filtros():
    assert escapar_termino('%a%,razon_social.ilike.%') == 'arazon_socialilike'
    assert escapar_termino(None) == ''
    assert len(escapar_termino('x' * 500)) == 100


def test_construir_params_operadores_basicos():
    params = construir_params([
        Filtro('estado', 'eq', 'pendiente'),
        Filtro('created_at', 'gte', '2024-01-01T00:00:00'),
        Filtro('created_at', 'lte', '2024-01-31T23:59:59'),
        Filtro('transportista_id', 'is', None),
        Filtro('activo', 'eq', True),
    ])
    assert params == [
        ('estado', 'eq.pendiente'),
        ('created_at', 'gte.2024-01-01T00:00:00'),
        ('created_at', 'lte.2024-01-31T23:59:59'),
        ('transportista_id', 'is.null'),
        ('activo', 'eq.true'),
    ]


def test_construir_params_in_cita_valores_con_reservados():
    params = construir_params([Filtro('codigo', 'in', ['A1', 'B,2', 'C(3)'])])
    assert params == [('codigo', 'in.(A1,"B,2","C(3)")')]


def test_construir_params_or_y_comodines():
    params = construir_params([contiene(('nombre', 'codigo'), 'coca')])
    assert params == [('or', '(nombre.ilike.*coca*,codigo.ilike.*coca*)')]


# ------------------------------------------------------------------
# transporte
# ------------------------------------------------------------------

def test_headers_de_autenticacion(gw, session):
    assert session.headers['apikey'] == 'clave'
    assert session.headers['Authorization'] == 'Bearer clave'
    assert gw.rest_url == 'https://demo.supabase.co/rest/v1'


def test_select_arma_query(gw, session):
    session.respuestas.append(_response(body=[{'id': 1}]))

    filas = gw.select(
        'productos', columnas='id, nombre',
        filtros=[Filtro('stock', 'lt', 10)],
        order_by='stock', ascending=False, limit=5, offset=10
    )

    assert filas == [{'id': 1}]
    req = session.requests[0]
    assert req['method'] == 'GET'
    assert req['url'] == 'https://demo.supabase.co/rest/v1/productos'
    assert req['params'] == [
        ('select', 'id,nombre'),
        ('stock', 'lt.10'),
        ('order', 'stock.desc'),
        ('limit', '5'),
        ('offset', '10'),
    ]
    assert req['timeout'] == 5


def test_insert_y_update_piden_representacion(gw, session):
    session.respuestas.extend([_response(201, [{'id': 7}]), _response(200, [{'id': 7, 'stock': 3}])])

    assert gw.insert('mermas_stock', [{'cantidad': 1}]) == [{'id': 7}]
    assert gw.update('productos', {'stock': 3}, [Filtro('id', 'eq', 7)]) == [{'id': 7, 'stock': 3}]

    assert session.requests[0]['headers'] == {'Prefer': 'return=representation'}
    assert session.requests[1]['method'] == 'PATCH'
    assert session.requests[1]['params'] == [('id', 'eq.7')]


def test_count_lee_content_range(gw, session):
    session.respuestas.append(_response(200, headers={'Content-Range': '0-24/3573'}))
    assert gw.count('pedidos') == 3573
    assert session.requests[0]['method'] == 'HEAD'
    assert session.requests[0]['headers'] == {'Prefer': 'count=exact'}

    session.respuestas.append(_response(200, headers={'Content-Range': '*/0'}))
    assert gw.count('pedidos', [Filtro('estado', 'eq', 'x')]) == 0


def test_rpc_postea_parametros(gw, session):
    session.respuestas.append(_response(200, {'success': True}))
    assert gw.rpc('descontar_stock_atomico', {'p_items': []}) == {'success': True}
    assert session.requests[0]['url'].endswith('/rest/v1/rpc/descontar_stock_atomico')
    assert session.requests[0]['json'] == {'p_items': []}


def test_rpc_void_devuelve_none(gw, session):
    session.respuestas.append(_response(204))
    assert gw.rpc('actualizar_orden_entrega_batch', {'ordenes': []}) is None


def test_error_del_backend_se_convierte_en_gateway_error(gw, session):
    session.respuestas.append(_response(400, {
        'message': 'new row violates check constraint',
        'code': '23514',
        'details': 'Failing row contains ...',
        'hint': None,
    }))

    with pytest.raises(GatewayError) as exc:
        gw.insert('mermas_stock', [{'cantidad': 0}])

    assert exc.value.message == 'new row violates check constraint'
    assert exc.value.code == '23514'
    assert exc.value.status == 400
    assert exc.value.to_dict()['details'] == 'Failing row contains ...'


def test_error_de_red_se_convierte_en_gateway_error():
    session = FakeSession(error=requests.ConnectionError('sin red'))
    gw = PostgrestGateway('https://demo.supabase.co', 'clave', session=session)

    with pytest.raises(GatewayError) as exc:
        gw.select('productos')
    assert 'sin red' in exc.value.message
