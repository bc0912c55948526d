# ==============================================================================
# SISTEMA DE PROFILING INTERNO
# ==============================================================================
# Mide rendimiento de endpoints y operaciones de servicio sin afectar la
# respuesta al cliente. Guarda logs legibles en LOGS_DIR para análisis humano.
#
# ACTIVAR/DESACTIVAR: Variable de entorno ENABLE_PROFILING (default activo)
# CARPETA DE LOGS:    Variable de entorno LOGS_DIR (default ./logs del paquete)
# ==============================================================================

import logging
import os
import threading
import time
from collections import defaultdict
from datetime import datetime
from functools import wraps

from distribuidora.config import _env_bool

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# CONFIGURACIÓN
# ═══════════════════════════════════════════════════════════════════════════

ENABLE_PROFILING = _env_bool('ENABLE_PROFILING', True)

# Umbrales de tiempo (en milisegundos)
THRESHOLD_WARNING = 300   # Advertencia si supera 300ms
THRESHOLD_CRITICAL = 700  # Crítico si supera 700ms

LOGS_DIR = os.getenv('LOGS_DIR') or os.path.join(os.path.dirname(__file__), 'logs')

PERFORMANCE_LOG = 'performance.log'
SLOW_ROUTES_LOG = 'slow_routes.log'
SLOW_FUNCTIONS_LOG = 'slow_functions.log'

# Nombres legibles de los endpoints
ROUTE_NAMES = {
    'GET /api/health': 'Estado del servicio',

    # Stock
    'POST /api/stock/disponibilidad': 'Verificar disponibilidad',
    'POST /api/stock/reservar': 'Reservar stock',
    'POST /api/stock/liberar': 'Liberar stock',
    'POST /api/stock/ajustar': 'Ajustar diferencia de stock',
    'POST /api/stock/mermas': 'Registrar merma',
    'GET /api/stock/bajo': 'Ver stock bajo',

    # Catálogo
    'GET /api/productos/buscar': 'Buscar productos',
    'GET /api/productos/<int:producto_id>/movimientos': 'Ver movimientos de producto',
    'GET /api/clientes/buscar': 'Buscar clientes',

    # Pedidos
    'POST /api/pedidos/<int:pedido_id>/estado': 'Cambiar estado de pedido',
    'POST /api/pedidos/orden-entrega': 'Guardar orden de entrega',
    'GET /api/pedidos/estadisticas': 'Ver estadísticas de pedidos',

    # Analytics
    'GET /api/analytics/export': 'Exportar BI a Excel',
}


# ═══════════════════════════════════════════════════════════════════════════
# ESTADÍSTICAS DE FUNCIONES (en memoria)
# ═══════════════════════════════════════════════════════════════════════════

# Estructura: {nombre_funcion: {calls: int, total_time: float, max_time: float}}
_function_stats = defaultdict(lambda: {'calls': 0, 'total_time': 0.0, 'max_time': 0.0})
_stats_lock = threading.Lock()
_write_lock = threading.Lock()


# ═══════════════════════════════════════════════════════════════════════════
# ARCHIVOS DE LOG
# ═══════════════════════════════════════════════════════════════════════════

def set_logs_dir(path):
    """Cambia la carpeta de logs (la crea recién al escribir)."""
    global LOGS_DIR
    LOGS_DIR = path


def _log_path(filename):
    return os.path.join(LOGS_DIR, filename)


def _get_timestamp():
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


def _write_log(filename, content):
    """Agrega contenido a un archivo de log; un fallo de disco no corta la request."""
    try:
        with _write_lock:
            os.makedirs(LOGS_DIR, exist_ok=True)
            with open(_log_path(filename), 'a', encoding='utf-8') as f:
                f.write(content)
    except OSError as e:
        logger.warning("[PROFILING] No se pudo escribir %s: %s", filename, e)


def _get_route_name(method, path, rule=None):
    """Nombre legible de la ruta; si no está en ROUTE_NAMES, la ruta cruda."""
    key = f"{method} {path}"
    if key in ROUTE_NAMES:
        return ROUTE_NAMES[key]

    if rule:
        rule_key = f"{method} {rule}"
        if rule_key in ROUTE_NAMES:
            return ROUTE_NAMES[rule_key]

    return key


# ═══════════════════════════════════════════════════════════════════════════
# 1️⃣ PROFILING DE RUTAS
# ═══════════════════════════════════════════════════════════════════════════

def log_route_performance(method, path, rule, time_ms, origen=None):
    """
    Registra el rendimiento de una request en performance.log

    Args:
        method: GET, POST, etc.
        path: Ruta solicitada (/api/stock/reservar)
        rule: Regla de Flask (/api/pedidos/<pedido_id>/estado)
        time_ms: Tiempo en milisegundos
        origen: IP del cliente (opcional)
    """
    if not ENABLE_PROFILING:
        return

    log_entry = f"""
════════════════════════════════════════
[PERFORMANCE] {_get_timestamp()}
────────────────────────────────────────
Acción: {_get_route_name(method, path, rule)}
Origen: {origen or 'desconocido'}
Ruta: {method} {path}
Tiempo: {time_ms:.0f} ms
"""
    _write_log(PERFORMANCE_LOG, log_entry)


def log_slow_route(method, path, rule, time_ms, origen=None, level='WARNING'):
    """
    Registra una request lenta en slow_routes.log

    Args:
        level: 'WARNING' (>300ms) o 'CRITICAL' (>700ms)
    """
    if not ENABLE_PROFILING:
        return

    severity = 'LENTA' if level == 'WARNING' else 'MUY LENTA'
    umbral = THRESHOLD_WARNING if level == 'WARNING' else THRESHOLD_CRITICAL

    log_entry = f"""
[{level}] {_get_timestamp()}
────────────────────────────────────────
Ruta {severity}: {_get_route_name(method, path, rule)}
Origen: {origen or 'desconocido'}
Detalle: {method} {path}
Tiempo: {time_ms:.0f} ms (umbral: {umbral} ms)
────────────────────────────────────────
"""
    _write_log(SLOW_ROUTES_LOG, log_entry)
    logger.warning("[PROFILING] %s %s tardó %.0f ms", method, path, time_ms)


# ═══════════════════════════════════════════════════════════════════════════
# 2️⃣ HOOKS PARA FLASK
# ═══════════════════════════════════════════════════════════════════════════

def init_profiling(app):
    """
    Registra los hooks before_request/after_request en la app Flask.

    Uso:
        from distribuidora.performance_logger import init_profiling
        init_profiling(app)
    """
    if not ENABLE_PROFILING:
        return

    @app.before_request
    def _start_timer():
        from flask import g
        g.start_time = time.perf_counter()

    @app.after_request
    def _log_request(response):
        from flask import g, request

        if not hasattr(g, 'start_time'):
            return response

        elapsed = (time.perf_counter() - g.start_time) * 1000  # ms

        method = request.method
        path = request.path
        rule = str(request.url_rule) if request.url_rule else path
        origen = request.remote_addr

        log_route_performance(method, path, rule, elapsed, origen)

        if elapsed >= THRESHOLD_CRITICAL:
            log_slow_route(method, path, rule, elapsed, origen, 'CRITICAL')
        elif elapsed >= THRESHOLD_WARNING:
            log_slow_route(method, path, rule, elapsed, origen, 'WARNING')

        return response


# ═══════════════════════════════════════════════════════════════════════════
# 3️⃣ DECORADOR PARA OPERACIONES DE SERVICIO
# ═══════════════════════════════════════════════════════════════════════════

def profile_function(func=None, name=None):
    """
    Decorador para medir operaciones de servicio costosas.

    Uso:
        @profile_function
        def registrar_merma(self, entrada):
            ...

        @profile_function(name="Exportar BI")
        def exportar_bi(self, desde, hasta):
            ...

    Registra cantidad de llamadas, tiempo promedio y tiempo máximo.
    """
    def decorator(fn):
        if not ENABLE_PROFILING:
            return fn

        func_name = name or fn.__qualname__

        @wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000

                with _stats_lock:
                    stats = _function_stats[func_name]
                    stats['calls'] += 1
                    stats['total_time'] += elapsed_ms
                    if elapsed_ms > stats['max_time']:
                        stats['max_time'] = elapsed_ms

                if elapsed_ms >= THRESHOLD_WARNING:
                    _log_slow_function_call(func_name, elapsed_ms)

        return wrapper

    # Permitir uso sin paréntesis: @profile_function
    if func is not None:
        return decorator(func)
    return decorator


def _log_slow_function_call(func_name, time_ms):
    severity = 'CRÍTICO' if time_ms >= THRESHOLD_CRITICAL else 'LENTO'

    log_entry = f"""
[{severity}] {_get_timestamp()}
Función: {func_name}
Tiempo: {time_ms:.0f} ms
────────────────────────────────────────
"""
    _write_log(SLOW_FUNCTIONS_LOG, log_entry)


# ═══════════════════════════════════════════════════════════════════════════
# 4️⃣ REPORTE DE ESTADÍSTICAS
# ═══════════════════════════════════════════════════════════════════════════

def get_function_stats():
    """
    Estadísticas de todas las funciones perfiladas.

    Returns:
        dict: {nombre: {calls, avg_time, max_time}}
    """
    with _stats_lock:
        result = {}
        for func_name, stats in _function_stats.items():
            calls = stats['calls']
            avg = stats['total_time'] / calls if calls > 0 else 0
            result[func_name] = {
                'calls': calls,
                'avg_time': round(avg, 2),
                'max_time': round(stats['max_time'], 2)
            }
        return result


def write_function_stats_report():
    """Escribe el resumen de get_function_stats() en slow_functions.log"""
    if not ENABLE_PROFILING:
        return

    stats = get_function_stats()
    if not stats:
        return

    sorted_stats = sorted(stats.items(), key=lambda x: x[1]['avg_time'], reverse=True)

    report = f"""
══════════════════════════════════════════════════════════════════════════════
  REPORTE DE RENDIMIENTO DE OPERACIONES
  Generado: {_get_timestamp()}
══════════════════════════════════════════════════════════════════════════════

"""
    for func_name, data in sorted_stats:
        status = ''
        if data['avg_time'] >= THRESHOLD_CRITICAL:
            status = ' [CRÍTICO]'
        elif data['avg_time'] >= THRESHOLD_WARNING:
            status = ' [LENTO]'
        elif data['max_time'] >= THRESHOLD_CRITICAL:
            status = ' [PICOS ALTOS]'

        report += f"""┌──────────────────────────────────────────────────────────────────────────────
│ OPERACIÓN: {func_name}{status}
│ Llamadas totales: {data['calls']}
│ Tiempo promedio:  {data['avg_time']:.0f} ms
│ Tiempo máximo:    {data['max_time']:.0f} ms
└──────────────────────────────────────────────────────────────────────────────

"""
    _write_log(SLOW_FUNCTIONS_LOG, report)


def reset_stats():
    """Reinicia todas las estadísticas (útil para testing)"""
    with _stats_lock:
        _function_stats.clear()


# ═══════════════════════════════════════════════════════════════════════════
# 5️⃣ UTILIDADES
# ═══════════════════════════════════════════════════════════════════════════

def clear_logs():
    """Borra los archivos de log."""
    for filename in (PERFORMANCE_LOG, SLOW_ROUTES_LOG, SLOW_FUNCTIONS_LOG):
        path = _log_path(filename)
        if os.path.exists(path):
            os.remove(path)


def get_log_summary():
    """
    Resumen del estado actual de los logs.

    Returns:
        dict: {archivo: {exists, size_kb, lines}}
    """
    summary = {}
    for name, filename in [('performance', PERFORMANCE_LOG),
                           ('slow_routes', SLOW_ROUTES_LOG),
                           ('slow_functions', SLOW_FUNCTIONS_LOG)]:
        path = _log_path(filename)
        if os.path.exists(path):
            size = os.path.getsize(path) / 1024  # KB
            with open(path, 'r', encoding='utf-8') as f:
                lines = sum(1 for _ in f)
            summary[name] = {'exists': True, 'size_kb': round(size, 2), 'lines': lines}
        else:
            summary[name] = {'exists': False, 'size_kb': 0, 'lines': 0}
    return summary


__all__ = [
    'ENABLE_PROFILING',
    'init_profiling',
    'profile_function',
    'get_function_stats',
    'write_function_stats_report',
    'reset_stats',
    'set_logs_dir',
    'clear_logs',
    'get_log_summary',
]
