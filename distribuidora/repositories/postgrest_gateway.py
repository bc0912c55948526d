# ==============================================================================
# GATEWAY POSTGREST - Acceso HTTP al backend
# ==============================================================================
# Traduce las operaciones de IGateway a la API REST del backend:
#   GET    /rest/v1/<tabla>?select=...&col=op.valor&order=col.asc
#   POST   /rest/v1/<tabla>               (insert)
#   PATCH  /rest/v1/<tabla>?col=op.valor  (update)
#   DELETE /rest/v1/<tabla>?col=op.valor  (delete)
#   HEAD   /rest/v1/<tabla>               (count, header Content-Range)
#   POST   /rest/v1/rpc/<funcion>         (procedimientos atómicos)
#
# Cualquier respuesta no-2xx o error de red se convierte en GatewayError.
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from distribuidora.exceptions import GatewayError
from distribuidora.repositories.filtros import Filtro, FiltroLike, FiltroOr


logger = logging.getLogger(__name__)

# Caracteres que obligan a citar un valor dentro de in.(...) / or=(...)
_RESERVADOS = set(',()"')


def _formatear_escalar(valor: Any) -> str:
    if valor is None:
        return 'null'
    if isinstance(valor, bool):
        return 'true' if valor else 'false'
    texto = str(valor)
    if any(c in _RESERVADOS for c in texto):
        return '"' + texto.replace('"', '\\"') + '"'
    return texto


def _formatear_condicion(filtro: Filtro) -> str:
    """Arma 'op.valor' para una condición simple."""
    operador = filtro.operador
    valor = filtro.valor
    if operador == 'in':
        lista = ','.join(_formatear_escalar(v) for v in valor)
        return f"in.({lista})"
    if operador in ('like', 'ilike'):
        # En la URL el comodín es '*'
        return f"{operador}.{str(valor).replace('%', '*')}"
    if operador == 'is':
        return f"is.{_formatear_escalar(valor)}"
    return f"{operador}.{_formatear_escalar(valor)}"


def construir_params(filtros: Optional[List[FiltroLike]]) -> List[Tuple[str, str]]:
    """
    Convierte filtros a parámetros de query.
    Devuelve una lista de tuplas porque una columna puede repetirse
    (ej. created_at=gte.X&created_at=lte.Y).
    """
    params: List[Tuple[str, str]] = []
    for filtro in filtros or []:
        if isinstance(filtro, FiltroOr):
            partes = [f"{c.columna}.{_formatear_condicion(c)}" for c in filtro.condiciones]
            params.append(('or', f"({','.join(partes)})"))
        else:
            params.append((filtro.columna, _formatear_condicion(filtro)))
    return params


class PostgrestGateway:
    """
    Cliente HTTP del backend remoto.

    Uso:
        gateway = PostgrestGateway(url, api_key)
        productos = gateway.select('productos', filtros=[Filtro('stock', 'lt', 10)])
        resultado = gateway.rpc('descontar_stock_atomico', {'p_items': [...]})
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            base_url: URL del proyecto (sin /rest/v1)
            api_key: Key con la que se autentica cada request
            timeout: Timeout en segundos por request
            session: Sesión de requests a reutilizar (opcional)
        """
        self.rest_url = base_url.rstrip('/') + '/rest/v1'
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': api_key,
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    # =========================================================================
    # TRANSPORTE
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        url = f"{self.rest_url}/{path}"
        try:
            response = self.session.request(
                method, url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error("[GATEWAY] %s %s sin respuesta: %s", method, path, e)
            raise GatewayError(f"No se pudo contactar al backend: {e}") from e

        if not response.ok:
            raise self._error_desde_respuesta(response)
        return response

    @staticmethod
    def _error_desde_respuesta(response: requests.Response) -> GatewayError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get('message') or response.text or response.reason or 'Error desconocido'
        return GatewayError(
            message,
            code=body.get('code'),
            details=body.get('details'),
            hint=body.get('hint'),
            status=response.status_code
        )

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # TABLAS
    # =========================================================================

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
        params = [('select', ''.join(columnas.split()))]
        params.extend(construir_params(filtros))
        if order_by:
            params.append(('order', f"{order_by}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(('limit', str(limit)))
        if offset is not None:
            params.append(('offset', str(offset)))
        return self._json(self._request('GET', tabla, params=params)) or []

    def insert(self, tabla: str, filas: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        response = self._request(
            'POST', tabla,
            json=filas,
            headers={'Prefer': 'return=representation'}
        )
        return self._json(response) or []

    def update(
        self,
        tabla: str,
        valores: Dict[str, Any],
        filtros: List[FiltroLike]
    ) -> List[Dict[str, Any]]:
        response = self._request(
            'PATCH', tabla,
            params=construir_params(filtros),
            json=valores,
            headers={'Prefer': 'return=representation'}
        )
        return self._json(response) or []

    def delete(self, tabla: str, filtros: List[FiltroLike]) -> None:
        self._request('DELETE', tabla, params=construir_params(filtros))

    def count(self, tabla: str, filtros: Optional[List[FiltroLike]] = None) -> int:
        response = self._request(
            'HEAD', tabla,
            params=[('select', '*')] + construir_params(filtros),
            headers={'Prefer': 'count=exact'}
        )
        # Content-Range: 0-24/3573  (o */0 cuando no hay filas)
        rango = response.headers.get('Content-Range', '')
        total = rango.rsplit('/', 1)[-1]
        return int(total) if total.isdigit() else 0

    # =========================================================================
    # PROCEDIMIENTOS
    # =========================================================================

    def rpc(self, nombre: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._request('POST', f"rpc/{nombre}", json=params or {})
        return self._json(response)
