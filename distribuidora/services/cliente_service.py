# ==============================================================================
# SERVICIO DE CLIENTES
# ==============================================================================
# Búsqueda, segmentación por zona/actividad y validación de clientes.
# Los pedidos de cada cliente se resuelven con una consulta agrupada a
# "pedidos" más una búsqueda en lote de clientes (sin N+1).
# ==============================================================================

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from distribuidora.exceptions import GatewayError
from distribuidora.models.entities import ESTADOS_ABIERTOS
from distribuidora.repositories.filtros import Filtro, contiene, escapar_termino
from distribuidora.services.base_service import BaseService


logger = logging.getLogger(__name__)

TELEFONO_REGEX = re.compile(r'^[\d\s\-+()]+$')
EMAIL_REGEX = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

COLUMNAS_BUSQUEDA = ('nombre_fantasia', 'razon_social', 'direccion', 'telefono', 'cuit')


class ClienteService(BaseService):
    """
    Servicio de clientes.

    Uso:
        clientes = container.cliente_service.buscar('almacen')
        resultado = container.cliente_service.validate(form_data)
    """

    def __init__(self, gateway, default_cache_ttl: float = 0):
        super().__init__(
            gateway,
            'clientes',
            order_by='nombre_fantasia',
            ascending=True,
            default_cache_ttl=default_cache_ttl
        )

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def buscar(self, termino: str) -> List[Dict[str, Any]]:
        """
        Busca clientes por nombre, razón social, dirección, teléfono o CUIT.

        Args:
            termino: Texto libre; se limpia antes de consultar

        Returns:
            Clientes que coinciden ([] si el término queda vacío)
        """
        seguro = escapar_termino(termino)
        if not seguro:
            return []
        return self.get_all(filters=[contiene(COLUMNAS_BUSQUEDA, seguro)])

    def get_by_zona(self, zona: str) -> List[Dict[str, Any]]:
        return self.get_all(filters={'zona': zona})

    def get_activos(self, dias: int = 30) -> List[Dict[str, Any]]:
        """
        Clientes con al menos un pedido en los últimos `dias` días.

        Returns:
            Clientes con la lista 'pedidos' (id, fecha_creacion) del período
        """
        limite = (datetime.now(timezone.utc) - timedelta(days=dias)).isoformat()
        return self._clientes_con_pedidos(
            [Filtro('fecha_creacion', 'gte', limite)],
            'id, cliente_id, fecha_creacion'
        )

    def get_with_pending_orders(self) -> List[Dict[str, Any]]:
        """
        Clientes con pedidos todavía abiertos (no entregados ni cancelados).

        Returns:
            Clientes con la lista 'pedidos' (id, estado, total, fecha_creacion)
        """
        return self._clientes_con_pedidos(
            [Filtro('estado', 'in', sorted(ESTADOS_ABIERTOS))],
            'id, cliente_id, estado, total, fecha_creacion'
        )

    def _clientes_con_pedidos(self, filtros: List[Filtro], columnas: str) -> List[Dict[str, Any]]:
        try:
            pedidos = self.gateway.select(
                'pedidos',
                columnas=columnas,
                filtros=filtros,
                order_by='fecha_creacion',
                ascending=False
            )
        except GatewayError as e:
            self.handle_error('obtener pedidos de clientes', e)
            return []

        por_cliente: Dict[Any, List[Dict[str, Any]]] = {}
        for pedido in pedidos:
            cliente_id = pedido.get('cliente_id')
            if cliente_id:
                por_cliente.setdefault(cliente_id, []).append(pedido)

        clientes = []
        for cliente in self.get_by_ids(list(por_cliente)):
            cliente = dict(cliente)
            cliente['pedidos'] = por_cliente.get(cliente['id'], [])
            clientes.append(cliente)

        clientes.sort(key=lambda c: str(c.get('nombre_fantasia') or '').lower())
        return clientes

    def get_resumen_cuenta(self, cliente_id: Any) -> Dict[str, Any]:
        """
        Resumen de cuenta corriente calculado por el backend.

        Raises:
            ServiceError: si el procedimiento falla
        """
        return self.rpc('obtener_resumen_cuenta_cliente', {'p_cliente_id': cliente_id})

    # =========================================================================
    # VALIDACIÓN
    # =========================================================================

    def validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Valida los datos de un cliente antes de guardarlo.

        Returns:
            {'valid': bool, 'errors': [str]}
        """
        errors = []

        if not str(data.get('nombre_fantasia') or '').strip():
            errors.append('El nombre de fantasía es requerido')

        if not str(data.get('direccion') or '').strip():
            errors.append('La dirección es requerida')

        telefono = data.get('telefono')
        if telefono and not TELEFONO_REGEX.match(str(telefono)):
            errors.append('El teléfono tiene un formato inválido')

        email = data.get('email')
        if email and not EMAIL_REGEX.match(str(email)):
            errors.append('El email tiene un formato inválido')

        limite = data.get('limite_credito')
        if limite is not None and limite != '':
            try:
                if float(limite) < 0:
                    errors.append('El límite de crédito no puede ser negativo')
            except (TypeError, ValueError):
                errors.append('El límite de crédito debe ser numérico')

        return {'valid': len(errors) == 0, 'errors': errors}
