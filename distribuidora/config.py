# ==============================================================================
# CONFIGURACIÓN
# ==============================================================================
# Toda la configuración viene de variables de entorno (o de un archivo .env
# en el directorio de trabajo). Nada de credenciales en el código.
#
# Variables:
#   SUPABASE_URL          URL del proyecto (https://xxxx.supabase.co)
#   SUPABASE_KEY          API key con la que se firma cada request
#   REQUEST_TIMEOUT       Timeout HTTP en segundos (default 15)
#   UMBRAL_STOCK_BAJO     Umbral de stock bajo (default 10)
#   CACHE_TTL_SEGUNDOS    TTL por defecto del caché de servicios (0 = sin caché)
#   LOG_LEVEL             Nivel de logging (default INFO)
#   ENABLE_PROFILING      "1"/"true" para activar el profiling
#   LOGS_DIR              Carpeta de logs de rendimiento
# ==============================================================================

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

_TRUE_VALUES = ('1', 'true', 'yes', 'si', 'on')

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    """Configuración de la aplicación."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    request_timeout: float = 15.0
    umbral_stock_bajo: int = 10
    cache_ttl_segundos: float = 0.0
    log_level: str = 'INFO'
    enable_profiling: bool = True
    logs_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'Settings':
        """Construye la configuración desde el entorno."""
        return cls(
            supabase_url=os.getenv('SUPABASE_URL'),
            supabase_key=os.getenv('SUPABASE_KEY'),
            request_timeout=_env_float('REQUEST_TIMEOUT', 15.0),
            umbral_stock_bajo=_env_int('UMBRAL_STOCK_BAJO', 10),
            cache_ttl_segundos=_env_float('CACHE_TTL_SEGUNDOS', 0.0),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            enable_profiling=_env_bool('ENABLE_PROFILING', True),
            logs_dir=os.getenv('LOGS_DIR'),
        )

    def require_backend(self) -> None:
        """
        Verifica que estén las credenciales del backend.

        Raises:
            RuntimeError: si falta SUPABASE_URL o SUPABASE_KEY
        """
        if not self.supabase_url or not self.supabase_key:
            raise RuntimeError(
                "No se encontró SUPABASE_URL (o SUPABASE_KEY). "
                "Definilas en tu .env, ej.: "
                "SUPABASE_URL=https://xxxx.supabase.co"
            )


def configure_logging(level: str = 'INFO') -> None:
    """Configura el logging raíz una sola vez."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT)
