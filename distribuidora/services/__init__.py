# ==============================================================================
# CAPA DE SERVICIOS - Lógica de negocio
# ==============================================================================
# Esta capa contiene TODA la lógica de negocio de la distribuidora.
#
# PRINCIPIOS:
# 1. Los servicios hablan con el backend solo a través del gateway (IGateway)
# 2. Aplican reglas de negocio y validaciones antes de escribir
# 3. Las rutas (controllers) solo llaman a servicios
# 4. Lo que necesita atomicidad (stock, pedidos completos, precios) se
#    delega a procedimientos remotos vía rpc()
#
# ESTRUCTURA:
# ├── base_service.py      → CRUD genérico, caché, lotes por ID, rpc()
# ├── producto_service.py  → Catálogo, stock atómico, precios masivos
# ├── cliente_service.py   → Clientes, búsqueda, validaciones
# ├── pedido_service.py    → Pedidos, estados, historial, orden de entrega
# ├── stock_manager.py     → Disponibilidad, reservas, ajustes, mermas
# ├── market_basket.py     → Pares de productos comprados juntos
# ├── excel_writer.py      → Excel multihoja (openpyxl)
# └── analytics_export.py  → Datasets BI y exportación a Excel
# ==============================================================================

from distribuidora.services.base_service import (
    BaseService,
    MemoryCache,
    invalidate_all_cache,
    get_global_cache_stats,
    cleanup_cache,
)
from distribuidora.services.producto_service import ProductoService
from distribuidora.services.cliente_service import ClienteService
from distribuidora.services.pedido_service import PedidoService
from distribuidora.services.stock_manager import StockManager
from distribuidora.services.analytics_export import AnalyticsExportService

__all__ = [
    'BaseService',
    'MemoryCache',
    'invalidate_all_cache',
    'get_global_cache_stats',
    'cleanup_cache',
    'ProductoService',
    'ClienteService',
    'PedidoService',
    'StockManager',
    'AnalyticsExportService',
]
