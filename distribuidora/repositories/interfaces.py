# ==============================================================================
# INTERFAZ DEL GATEWAY REMOTO
# ==============================================================================
#
# Contrato que cumple cualquier acceso al backend. Permite:
#
# 1. INDEPENDENCIA DE ALMACENAMIENTO
#    - Los servicios dependen de esta interfaz, NO de PostgREST
#    - Cambiar de backend solo requiere otra implementación
#
# 2. TESTING
#    - Los tests usan un gateway en memoria que implementa lo mismo
#
# Las operaciones que necesitan atomicidad (stock, creación de pedidos,
# precios masivos) NO se resuelven acá: se invocan con rpc() y las ejecuta
# el backend en una sola transacción.
#
# ==============================================================================

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from distribuidora.repositories.filtros import FiltroLike


@runtime_checkable
class IGateway(Protocol):
    """Acceso a tablas y procedimientos del backend remoto."""

    def select(
        self,
        tabla: str,
        columnas: str = '*',
        filtros: Optional[List[FiltroLike]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Lee filas de una tabla."""
        ...

    def insert(self, tabla: str, filas: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Inserta filas y devuelve las filas creadas."""
        ...

    def update(
        self,
        tabla: str,
        valores: Dict[str, Any],
        filtros: List[FiltroLike]
    ) -> List[Dict[str, Any]]:
        """Actualiza las filas que cumplen los filtros."""
        ...

    def delete(self, tabla: str, filtros: List[FiltroLike]) -> None:
        """Elimina las filas que cumplen los filtros."""
        ...

    def count(self, tabla: str, filtros: Optional[List[FiltroLike]] = None) -> int:
        """Cuenta filas."""
        ...

    def rpc(self, nombre: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Ejecuta un procedimiento remoto atómico."""
        ...
