# ==============================================================================
# DISTRIBUIDORA - Capa de servicios del negocio de distribución
# ==============================================================================
# Clientes, productos, pedidos, stock y exportación analítica sobre un
# backend PostgREST. Ver app_container.py para obtener los servicios.
# ==============================================================================

__version__ = '1.0.0'
