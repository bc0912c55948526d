# ==============================================================================
# SERVICIO BASE - Operaciones CRUD genéricas sobre una tabla remota
# ==============================================================================
# Todos los servicios de tabla (productos, clientes, pedidos) heredan de acá.
#
# Política de errores:
#   - Lecturas (get_all, get_by_id, get_by_ids, count): loguean y devuelven
#     un valor vacío ([], None, 0)
#   - Escrituras (create, update, delete...): loguean y relanzan
#   - rpc(): con fallback devuelve el resultado del fallback; sin fallback
#     lanza ServiceError
#
# Incluye un caché en memoria con TTL compartido por todos los servicios.
# Cualquier escritura invalida las entradas de su tabla.
# ==============================================================================

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from distribuidora.exceptions import GatewayError, ServiceError
from distribuidora.repositories.filtros import Filtro, normalizar_filtros
from distribuidora.repositories.interfaces import IGateway


logger = logging.getLogger(__name__)

# Tamaño de lote para búsquedas "id in (...)"; evita URLs demasiado largas
TAMANIO_LOTE_IDS = 200


# ==============================================================================
# CACHÉ EN MEMORIA
# ==============================================================================

class MemoryCache:
    """
    Caché clave/valor con TTL por entrada.

    Las claves tienen la forma "<tabla>:<operacion>[:<opciones>]" para que
    invalidate(tabla) borre todo lo de una tabla.
    """

    def __init__(self, reloj: Callable[[], float] = time.monotonic):
        self._entradas: Dict[str, tuple] = {}
        self._lock = threading.RLock()
        self._reloj = reloj
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        """Devuelve el valor vigente o None."""
        with self._lock:
            entrada = self._entradas.get(key)
            if entrada is None:
                self._misses += 1
                return None

            data, guardado, ttl = entrada
            if self._reloj() - guardado > ttl:
                del self._entradas[key]
                self._misses += 1
                return None

            self._hits += 1
            return data

    def set(self, key: str, data: Any, ttl: float) -> None:
        with self._lock:
            self._entradas[key] = (data, self._reloj(), ttl)

    def invalidate(self, prefijo: Optional[str] = None) -> None:
        """Borra todo, o solo las claves que empiezan con `prefijo`."""
        with self._lock:
            if not prefijo:
                self._entradas.clear()
                return
            for key in [k for k in self._entradas if k.startswith(prefijo)]:
                del self._entradas[key]

    def cleanup(self) -> None:
        """Elimina las entradas vencidas."""
        with self._lock:
            ahora = self._reloj()
            vencidas = [
                k for k, (_, guardado, ttl) in self._entradas.items()
                if ahora - guardado > ttl
            ]
            for key in vencidas:
                del self._entradas[key]

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'hits': self._hits,
                'misses': self._misses,
                'size': len(self._entradas),
            }


_global_cache = MemoryCache()


def invalidate_all_cache() -> None:
    """Vacía el caché global (ej. al cambiar de usuario)."""
    _global_cache.invalidate()


def get_global_cache_stats() -> Dict[str, int]:
    return _global_cache.get_stats()


def cleanup_cache() -> None:
    """Libera las entradas vencidas del caché global."""
    _global_cache.cleanup()


# ==============================================================================
# HELPERS DE CONSULTA
# ==============================================================================

def ids_unicos(ids: Iterable[Any]) -> List[Any]:
    """IDs sin repetir, sin vacíos, respetando el orden de aparición."""
    vistos = set()
    resultado = []
    for id_ in ids:
        if not id_ or id_ in vistos:
            continue
        vistos.add(id_)
        resultado.append(id_)
    return resultado


def seleccionar_por_ids(
    gateway: IGateway,
    tabla: str,
    ids: Iterable[Any],
    columnas: str = '*',
    columna_id: str = 'id',
    filtros: Optional[List[Any]] = None,
    tamanio_lote: int = TAMANIO_LOTE_IDS
) -> List[Dict[str, Any]]:
    """
    Lee todas las filas cuyo `columna_id` esté en `ids`, en lotes.
    `filtros` se agrega a cada lote.

    Raises:
        GatewayError: si falla cualquier lote
    """
    pendientes = ids_unicos(ids)
    filas: List[Dict[str, Any]] = []
    for inicio in range(0, len(pendientes), tamanio_lote):
        lote = pendientes[inicio:inicio + tamanio_lote]
        filas.extend(gateway.select(
            tabla,
            columnas=columnas,
            filtros=[Filtro(columna_id, 'in', lote)] + list(filtros or [])
        ))
    return filas


def verificar_resultado(resultado: Any, operacion: str, mensaje_default: str = None) -> Dict[str, Any]:
    """
    Verifica la respuesta de un procedimiento que devuelve {success, ...}.

    La ausencia de success=True es un fallo. El mensaje es la lista
    `errores` unida por comas o, si no hay, el campo `error`.

    Raises:
        ServiceError: si la operación no fue exitosa
    """
    if isinstance(resultado, dict) and resultado.get('success'):
        return resultado

    mensaje = None
    if isinstance(resultado, dict):
        errores = resultado.get('errores') or []
        if errores:
            mensaje = ', '.join(str(e) for e in errores)
        else:
            mensaje = resultado.get('error')

    raise ServiceError(mensaje or mensaje_default or f"Error en operación {operacion}")


# ==============================================================================
# SERVICIO BASE
# ==============================================================================

class BaseService:
    """
    CRUD genérico sobre una tabla del backend.

    Uso:
        class ClienteService(BaseService):
            def __init__(self, gateway):
                super().__init__(gateway, 'clientes', order_by='nombre_fantasia')
    """

    def __init__(
        self,
        gateway: IGateway,
        tabla: str,
        order_by: str = 'id',
        ascending: bool = True,
        select_query: str = '*',
        default_cache_ttl: float = 0,
        cache: MemoryCache = None
    ):
        """
        Args:
            gateway: Acceso al backend
            tabla: Nombre de la tabla
            order_by: Columna de orden por defecto
            ascending: Sentido del orden por defecto
            select_query: Proyección por defecto
            default_cache_ttl: TTL en segundos para *_cached (0 = sin caché)
            cache: Caché a usar (por defecto el global)
        """
        self.gateway = gateway
        self.tabla = tabla
        self.order_by = order_by
        self.ascending = ascending
        self.select_query = select_query
        self.default_cache_ttl = default_cache_ttl
        self.cache = cache if cache is not None else _global_cache

    # =========================================================================
    # CACHÉ
    # =========================================================================

    def _cache_key(self, operacion: str, opciones: Dict[str, Any] = None) -> str:
        base = f"{self.tabla}:{operacion}"
        if not opciones:
            return base
        return f"{base}:{json.dumps(opciones, sort_keys=True, default=str)}"

    def invalidate_cache(self) -> None:
        """Invalida las entradas de esta tabla."""
        self.cache.invalidate(self.tabla)

    def get_cache_stats(self) -> Dict[str, int]:
        return self.cache.get_stats()

    # =========================================================================
    # LECTURA
    # =========================================================================

    def get_all(
        self,
        filters: Any = None,
        order_by: str = None,
        ascending: bool = None,
        select_query: str = None,
        limit: int = None,
        offset: int = None
    ) -> List[Dict[str, Any]]:
        """
        Obtiene los registros de la tabla.

        Args:
            filters: {columna: valor}, {columna: (operador, valor)} o lista de Filtro
            order_by: Columna de orden (default del servicio)
            ascending: Sentido del orden (default del servicio)
            select_query: Proyección (default del servicio)
            limit: Máximo de filas
            offset: Filas a saltear

        Returns:
            Lista de registros ([] si el backend falla)
        """
        try:
            return self.gateway.select(
                self.tabla,
                columnas=select_query or self.select_query,
                filtros=normalizar_filtros(filters),
                order_by=order_by or self.order_by,
                ascending=self.ascending if ascending is None else ascending,
                limit=limit,
                offset=offset
            )
        except GatewayError as e:
            self.handle_error('obtener registros', e)
            return []

    def get_all_cached(
        self,
        ttl: float = None,
        force_refresh: bool = False,
        cache_key: str = None,
        **opciones
    ) -> List[Dict[str, Any]]:
        """
        get_all con caché. Con TTL 0 (o negativo) no usa caché.

        Args:
            ttl: Segundos de vigencia (default del servicio)
            force_refresh: Ignorar lo cacheado y volver a leer
            cache_key: Clave propia en lugar de la generada
            **opciones: Argumentos de get_all
        """
        ttl = self.default_cache_ttl if ttl is None else ttl
        if ttl <= 0:
            return self.get_all(**opciones)

        key = cache_key or self._cache_key('get_all', opciones)
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        data = self.get_all(**opciones)
        self.cache.set(key, data, ttl)
        return data

    def get_by_id(self, id_: Any) -> Optional[Dict[str, Any]]:
        """Obtiene un registro por ID, o None si no existe o si el backend falla."""
        try:
            filas = self.gateway.select(
                self.tabla,
                columnas=self.select_query,
                filtros=[Filtro('id', 'eq', id_)],
                limit=1
            )
        except GatewayError as e:
            self.handle_error('obtener registro', e)
            return None
        return filas[0] if filas else None

    def get_by_id_cached(
        self,
        id_: Any,
        ttl: float = None,
        force_refresh: bool = False,
        cache_key: str = None
    ) -> Optional[Dict[str, Any]]:
        ttl = self.default_cache_ttl if ttl is None else ttl
        if ttl <= 0:
            return self.get_by_id(id_)

        key = cache_key or self._cache_key('get_by_id', {'id': id_})
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        data = self.get_by_id(id_)
        # Los "no encontrado" no se cachean
        if data:
            self.cache.set(key, data, ttl)
        return data

    def get_by_ids(self, ids: Iterable[Any], select_query: str = None) -> List[Dict[str, Any]]:
        """
        Obtiene varios registros en lotes de "id in (...)".

        Returns:
            Registros encontrados ([] si el backend falla)
        """
        try:
            return seleccionar_por_ids(
                self.gateway, self.tabla, ids,
                columnas=select_query or self.select_query
            )
        except GatewayError as e:
            self.handle_error('obtener registros por id', e)
            return []

    def count(self, filters: Any = None) -> int:
        try:
            return self.gateway.count(self.tabla, normalizar_filtros(filters))
        except GatewayError as e:
            self.handle_error('contar registros', e)
            return 0

    def exists(self, filters: Any) -> bool:
        return self.count(filters) > 0

    # =========================================================================
    # ESCRITURA
    # =========================================================================

    def create(self, data: Dict[str, Any], return_data: bool = True) -> Any:
        """
        Crea un registro.

        Returns:
            El registro creado, o True si return_data es False

        Raises:
            GatewayError: si el backend rechaza la inserción
        """
        try:
            filas = self.gateway.insert(self.tabla, [data])
        except GatewayError as e:
            self.handle_error('crear registro', e)
            raise
        self.invalidate_cache()
        if not return_data:
            return True
        return filas[0] if filas else None

    def create_many(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            filas = self.gateway.insert(self.tabla, list(items))
        except GatewayError as e:
            self.handle_error('crear registros', e)
            raise
        self.invalidate_cache()
        return filas

    def update(self, id_: Any, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Actualiza un registro por ID.

        Returns:
            El registro actualizado (None si no existía)

        Raises:
            GatewayError: si el backend rechaza la actualización
        """
        try:
            filas = self.gateway.update(self.tabla, data, [Filtro('id', 'eq', id_)])
        except GatewayError as e:
            self.handle_error('actualizar registro', e)
            raise
        self.invalidate_cache()
        return filas[0] if filas else None

    def update_where(self, filters: Any, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        filtros = normalizar_filtros(filters)
        if not filtros:
            raise ValueError("update_where requiere al menos un filtro")
        try:
            filas = self.gateway.update(self.tabla, data, filtros)
        except GatewayError as e:
            self.handle_error('actualizar registros', e)
            raise
        self.invalidate_cache()
        return filas

    def delete(self, id_: Any) -> bool:
        try:
            self.gateway.delete(self.tabla, [Filtro('id', 'eq', id_)])
        except GatewayError as e:
            self.handle_error('eliminar registro', e)
            raise
        self.invalidate_cache()
        return True

    def delete_where(self, filters: Any) -> bool:
        filtros = normalizar_filtros(filters)
        if not filtros:
            raise ValueError("delete_where requiere al menos un filtro")
        try:
            self.gateway.delete(self.tabla, filtros)
        except GatewayError as e:
            self.handle_error('eliminar registros', e)
            raise
        self.invalidate_cache()
        return True

    # =========================================================================
    # PROCEDIMIENTOS REMOTOS
    # =========================================================================

    def rpc(
        self,
        nombre: str,
        params: Dict[str, Any] = None,
        fallback: Callable[[], Any] = None
    ) -> Any:
        """
        Ejecuta un procedimiento atómico del backend.

        Args:
            nombre: Nombre del procedimiento
            params: Parámetros
            fallback: Función sin argumentos a usar si el backend falla.
                Solo para operaciones que toleran ejecución no atómica.

        Returns:
            La respuesta del procedimiento (o la del fallback)

        Raises:
            ServiceError: si falla y no hay fallback
        """
        try:
            return self.gateway.rpc(nombre, params or {})
        except GatewayError as e:
            if fallback is not None:
                logger.warning(
                    "[RPC] %s no disponible (%s), usando fallback", nombre, e.message
                )
                return fallback()
            logger.error(
                "[RPC] %s falló en %s: code=%s message=%s details=%s hint=%s",
                nombre, self.tabla, e.code, e.message, e.details, e.hint
            )
            raise ServiceError(f"Error en operación {nombre}: {e.message}") from e

    def handle_error(self, operacion: str, error: Exception) -> None:
        """Loguea un error con el contexto de la tabla."""
        logger.error("Error al %s en %s: %s", operacion, self.tabla, error)
