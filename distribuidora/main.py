# ==============================================================================
# API HTTP - Rutas JSON sobre los servicios
# ==============================================================================
# Las rutas solo traducen HTTP ↔ servicios: leen parámetros, llaman al
# servicio del contenedor y devuelven JSON. La lógica vive en services/.
#
# Errores:
#   ValueError / EstadoInvalidoError → 400
#   ServiceError / GatewayError      → 502 (falló el backend remoto)
#   HTTPException                    → su código, en JSON
# ==============================================================================

import io
import logging

from flask import Flask, jsonify, request, send_file
from werkzeug.exceptions import BadRequest, HTTPException, NotFound

from distribuidora.app_container import AppContainer, get_container
from distribuidora.config import configure_logging
from distribuidora.exceptions import GatewayError, ServiceError
from distribuidora.performance_logger import init_profiling, set_logs_dir
from distribuidora.services.excel_writer import MIMETYPE_XLSX


logger = logging.getLogger(__name__)


def to_int(valor, default=None):
    try:
        return int(valor)
    except (TypeError, ValueError):
        return default


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Se esperaba un cuerpo JSON")
    return data


def _items_del_body(data: dict, campo: str = 'items') -> list:
    items = data.get(campo)
    if not isinstance(items, list):
        raise BadRequest(f"'{campo}' debe ser una lista")
    return items


def create_app(container: AppContainer = None) -> Flask:
    """
    Crea la aplicación Flask.

    Args:
        container: Contenedor de servicios (por defecto el global)
    """
    container = container or get_container()
    configure_logging(container.settings.log_level)

    app = Flask(__name__)
    app.config['CONTAINER'] = container

    # ═══════════════════════════════════════════════════════════════════════
    # PROFILING
    # ═══════════════════════════════════════════════════════════════════════
    # Mide rendimiento de rutas. Logs en LOGS_DIR.
    if container.settings.logs_dir:
        set_logs_dir(container.settings.logs_dir)
    if container.settings.enable_profiling:
        init_profiling(app)

    # ═══════════════════════════════════════════════════════════════════════
    # MANEJO DE ERRORES
    # ═══════════════════════════════════════════════════════════════════════

    @app.errorhandler(HTTPException)
    def _http_error(e):
        return {"success": False, "error": e.description}, e.code

    @app.errorhandler(ValueError)
    def _validation_error(e):
        return {"success": False, "error": str(e)}, 400

    @app.errorhandler(GatewayError)
    def _gateway_error(e):
        logger.error("[API] Error del backend en %s: %s", request.path, e)
        return {"success": False, "error": str(e), "detalle": e.to_dict()}, 502

    @app.errorhandler(ServiceError)
    def _service_error(e):
        logger.error("[API] Error de servicio en %s: %s", request.path, e)
        return {"success": False, "error": str(e)}, 502

    # ═══════════════════════════════════════════════════════════════════════
    # ESTADO
    # ═══════════════════════════════════════════════════════════════════════

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return {"status": "ok"}

    # ═══════════════════════════════════════════════════════════════════════
    # STOCK
    # ═══════════════════════════════════════════════════════════════════════

    @app.route("/api/stock/disponibilidad", methods=["POST"])
    def api_stock_disponibilidad():
        """Verifica stock sin modificar nada"""
        items = _items_del_body(_json_body())
        return container.stock_manager.verificar_disponibilidad(items)

    @app.route("/api/stock/reservar", methods=["POST"])
    def api_stock_reservar():
        data = _json_body()
        resultado = container.stock_manager.reservar_stock(
            _items_del_body(data),
            validar=data.get('validar', True) is not False
        )
        return resultado, (200 if resultado['success'] else 409)

    @app.route("/api/stock/liberar", methods=["POST"])
    def api_stock_liberar():
        resultado = container.stock_manager.liberar_stock(_items_del_body(_json_body()))
        return resultado, (200 if resultado['success'] else 409)

    @app.route("/api/stock/ajustar", methods=["POST"])
    def api_stock_ajustar():
        """Ajusta stock al editar un pedido: {originales: [...], nuevos: [...]}"""
        data = _json_body()
        resultado = container.stock_manager.ajustar_diferencia(
            _items_del_body(data, 'originales'),
            _items_del_body(data, 'nuevos')
        )
        return resultado, (200 if resultado['success'] else 409)

    @app.route("/api/stock/mermas", methods=["POST"])
    def api_stock_mermas():
        merma = container.stock_manager.registrar_merma(_json_body())
        return {"success": True, "merma": merma}, 201

    @app.route("/api/stock/bajo", methods=["GET"])
    def api_stock_bajo():
        umbral = to_int(request.args.get('umbral'))
        return jsonify(container.stock_manager.get_productos_stock_bajo(umbral))

    # ═══════════════════════════════════════════════════════════════════════
    # CATÁLOGO
    # ═══════════════════════════════════════════════════════════════════════

    @app.route("/api/productos/buscar", methods=["GET"])
    def api_productos_buscar():
        termino = (request.args.get('q') or '').strip()
        return jsonify(container.producto_service.buscar(termino))

    @app.route("/api/productos/<int:producto_id>/movimientos", methods=["GET"])
    def api_producto_movimientos(producto_id):
        resumen = container.stock_manager.get_resumen_movimientos(
            producto_id,
            desde=request.args.get('desde'),
            hasta=request.args.get('hasta')
        )
        if resumen is None:
            raise NotFound("Producto no encontrado")
        return resumen

    @app.route("/api/clientes/buscar", methods=["GET"])
    def api_clientes_buscar():
        termino = (request.args.get('q') or '').strip()
        return jsonify(container.cliente_service.buscar(termino))

    # ═══════════════════════════════════════════════════════════════════════
    # PEDIDOS
    # ═══════════════════════════════════════════════════════════════════════

    @app.route("/api/pedidos/<int:pedido_id>/estado", methods=["POST"])
    def api_pedido_estado(pedido_id):
        data = _json_body()
        estado = data.get('estado')
        if not estado:
            raise BadRequest("Falta 'estado'")

        pedido = container.pedido_service.cambiar_estado(
            pedido_id,
            estado,
            notas=data.get('notas') or '',
            usuario_id=data.get('usuario_id')
        )
        if pedido is None:
            raise NotFound("Pedido no encontrado")
        return {"success": True, "pedido": pedido}

    @app.route("/api/pedidos/orden-entrega", methods=["POST"])
    def api_pedidos_orden_entrega():
        ordenes = _items_del_body(_json_body(), 'ordenes')
        container.pedido_service.actualizar_orden_entrega(ordenes)
        return {"success": True, "actualizados": len(ordenes)}

    @app.route("/api/pedidos/estadisticas", methods=["GET"])
    def api_pedidos_estadisticas():
        return container.pedido_service.get_estadisticas(
            desde=request.args.get('desde'),
            hasta=request.args.get('hasta')
        )

    # ═══════════════════════════════════════════════════════════════════════
    # ANALYTICS
    # ═══════════════════════════════════════════════════════════════════════

    @app.route("/api/analytics/export", methods=["GET"])
    def api_analytics_export():
        """Descarga el Excel de BI: ?desde=YYYY-MM-DD&hasta=YYYY-MM-DD"""
        desde = request.args.get('desde')
        hasta = request.args.get('hasta')
        if not desde or not hasta:
            raise BadRequest("Faltan 'desde' y/o 'hasta'")

        resultado = container.analytics_service.exportar_bi(desde, hasta)
        return send_file(
            io.BytesIO(resultado['contenido']),
            mimetype=MIMETYPE_XLSX,
            as_attachment=True,
            download_name=resultado['nombre_archivo']
        )

    return app
