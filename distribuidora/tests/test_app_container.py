import pytest

from distribuidora.app_container import AppContainer, get_container
from distribuidora.config import Settings
from distribuidora.repositories import PostgrestGateway


def test_singleton(container):
    assert AppContainer() is container
    assert get_container() is container


def test_servicios_comparten_gateway(container, gateway):
    assert container.producto_service.gateway is gateway
    assert container.stock_manager.producto_service is container.producto_service
    assert container.analytics_service.gateway is gateway
    assert container.pedido_service is container.pedido_service


def test_umbral_desde_configuracion(gateway):
    container = AppContainer(settings=Settings(umbral_stock_bajo=3), gateway=gateway)
    assert container.stock_manager.umbral_stock_bajo == 3


def test_gateway_real_se_crea_al_pedirlo():
    container = AppContainer(settings=Settings(
        supabase_url='https://demo.supabase.co', supabase_key='k', request_timeout=7
    ))
    gateway = container.gateway
    assert isinstance(gateway, PostgrestGateway)
    assert gateway.timeout == 7
    assert gateway.rest_url == 'https://demo.supabase.co/rest/v1'


def test_sin_credenciales_falla_al_usar_el_backend():
    container = AppContainer(settings=Settings())
    with pytest.raises(RuntimeError, match='SUPABASE_URL'):
        container.producto_service


def test_reset_recrea_servicios(container, gateway):
    anterior = container.producto_service
    container.reset()
    assert container.producto_service is not anterior
    assert container.gateway is gateway


def test_settings_desde_entorno(monkeypatch):
    monkeypatch.setenv('SUPABASE_URL', 'https://x.supabase.co')
    monkeypatch.setenv('SUPABASE_KEY', 'clave')
    monkeypatch.setenv('UMBRAL_STOCK_BAJO', '25')
    monkeypatch.setenv('REQUEST_TIMEOUT', 'no-numerico')
    monkeypatch.setenv('ENABLE_PROFILING', 'no')
    monkeypatch.setenv('LOG_LEVEL', 'debug')

    settings = Settings.from_env()

    assert settings.supabase_url == 'https://x.supabase.co'
    assert settings.umbral_stock_bajo == 25
    assert settings.request_timeout == 15.0
    assert settings.enable_profiling is False
    assert settings.log_level == 'DEBUG'
