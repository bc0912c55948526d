# ==============================================================================
# EXCEPCIONES DEL DOMINIO
# ==============================================================================
# Taxonomía de errores:
#   - Validación: se devuelve como lista de mensajes, NUNCA se lanza
#   - GatewayError: el backend remoto respondió con error o no respondió
#   - ServiceError: una operación remota falló o respondió sin "success"
#   - EstadoInvalidoError: transición de pedido a un estado desconocido
# ==============================================================================

from typing import Optional


class GatewayError(Exception):
    """Error de transporte o respuesta de error del backend remoto."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
        status: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint
        self.status = status

    def to_dict(self):
        return {
            'message': self.message,
            'code': self.code,
            'details': self.details,
            'hint': self.hint,
        }


class ServiceError(Exception):
    """Una operación remota falló; el mensaje es el del backend."""
    pass


class EstadoInvalidoError(ValueError):
    """Se pidió una transición a un estado de pedido no reconocido."""
    pass
