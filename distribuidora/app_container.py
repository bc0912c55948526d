# ==============================================================================
# CONTENEDOR DE DEPENDENCIAS - Inyección de servicios
# ==============================================================================
# Este módulo proporciona una forma centralizada de obtener el gateway y
# los servicios. Facilita:
#   - Inyección de dependencias
#   - Testing (se puede pasar un gateway en memoria)
#   - Cambiar de backend sin tocar servicios
#
# El gateway real (PostgREST) se crea recién cuando algún servicio lo pide;
# si faltan credenciales, el error aparece en ese momento.
# ==============================================================================

from typing import Optional

from distribuidora.config import Settings
from distribuidora.repositories import IGateway, PostgrestGateway
from distribuidora.services import (
    ProductoService,
    ClienteService,
    PedidoService,
    StockManager,
    AnalyticsExportService,
)


class AppContainer:
    """
    Contenedor de dependencias de la aplicación.

    Implementa el patrón Singleton para asegurar una única instancia
    de cada servicio.

    Uso:
        container = AppContainer()
        stock = container.stock_manager
        pedidos = container.pedido_service

    En tests:
        container = AppContainer(gateway=FakeGateway())
    """

    _instance: Optional['AppContainer'] = None

    def __new__(cls, settings: Settings = None, gateway: IGateway = None):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, settings: Settings = None, gateway: IGateway = None):
        """
        Inicializa el contenedor.

        Args:
            settings: Configuración (por defecto desde el entorno)
            gateway: Gateway a usar en lugar del PostgREST real
        """
        if self._initialized:
            return

        self.settings = settings or Settings.from_env()
        self._gateway_inyectado = gateway

        # Lazy loading
        self._gateway: Optional[IGateway] = gateway
        self._producto_service: Optional[ProductoService] = None
        self._cliente_service: Optional[ClienteService] = None
        self._pedido_service: Optional[PedidoService] = None
        self._stock_manager: Optional[StockManager] = None
        self._analytics_service: Optional[AnalyticsExportService] = None

        self._initialized = True

    # =========================================================================
    # GATEWAY
    # =========================================================================

    @property
    def gateway(self) -> IGateway:
        """Gateway del backend (singleton)."""
        if self._gateway is None:
            self.settings.require_backend()
            self._gateway = PostgrestGateway(
                self.settings.supabase_url,
                self.settings.supabase_key,
                timeout=self.settings.request_timeout
            )
        return self._gateway

    # =========================================================================
    # SERVICIOS
    # =========================================================================

    @property
    def producto_service(self) -> ProductoService:
        """Servicio de productos (singleton)."""
        if self._producto_service is None:
            self._producto_service = ProductoService(
                self.gateway,
                default_cache_ttl=self.settings.cache_ttl_segundos
            )
        return self._producto_service

    @property
    def cliente_service(self) -> ClienteService:
        """Servicio de clientes (singleton)."""
        if self._cliente_service is None:
            self._cliente_service = ClienteService(
                self.gateway,
                default_cache_ttl=self.settings.cache_ttl_segundos
            )
        return self._cliente_service

    @property
    def pedido_service(self) -> PedidoService:
        """Servicio de pedidos (singleton)."""
        if self._pedido_service is None:
            self._pedido_service = PedidoService(
                self.gateway,
                default_cache_ttl=self.settings.cache_ttl_segundos
            )
        return self._pedido_service

    @property
    def stock_manager(self) -> StockManager:
        """Gestor de stock (singleton)."""
        if self._stock_manager is None:
            self._stock_manager = StockManager(
                self.producto_service,
                umbral_stock_bajo=self.settings.umbral_stock_bajo
            )
        return self._stock_manager

    @property
    def analytics_service(self) -> AnalyticsExportService:
        """Servicio de exportación BI (singleton)."""
        if self._analytics_service is None:
            self._analytics_service = AnalyticsExportService(self.gateway)
        return self._analytics_service

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def reset(self) -> None:
        """
        Reinicia todas las instancias.
        Útil para testing o para recargar configuración.
        """
        self._gateway = self._gateway_inyectado
        self._producto_service = None
        self._cliente_service = None
        self._pedido_service = None
        self._stock_manager = None
        self._analytics_service = None

    @classmethod
    def get_instance(cls, settings: Settings = None, gateway: IGateway = None) -> 'AppContainer':
        """
        Obtiene la instancia singleton del contenedor.

        Args:
            settings: Configuración (solo se usa en primera llamada)
            gateway: Gateway inyectado (solo se usa en primera llamada)

        Returns:
            Instancia del contenedor
        """
        if cls._instance is None:
            return cls(settings, gateway)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Elimina la instancia singleton (útil para tests)."""
        if cls._instance is not None:
            cls._instance.reset()
            cls._instance = None


# Función helper para obtener el contenedor global
def get_container(settings: Settings = None, gateway: IGateway = None) -> AppContainer:
    """
    Obtiene el contenedor de dependencias global.

    Args:
        settings: Configuración
        gateway: Gateway inyectado

    Returns:
        Instancia del contenedor
    """
    return AppContainer.get_instance(settings, gateway)
