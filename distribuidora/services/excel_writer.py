# ==============================================================================
# ESCRITURA DE EXCEL MULTIHOJA
# ==============================================================================
# Adaptador mínimo sobre openpyxl: una hoja por dataset, encabezado en
# negrita con fondo gris, anchos de columna configurables.
# ==============================================================================

import io
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter


MIMETYPE_XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

ANCHO_DEFAULT = 15
_CARACTERES_INVALIDOS = '[]:*?/\\'


def _nombre_hoja(nombre: str) -> str:
    """Excel no acepta ciertos caracteres ni más de 31 letras en el nombre."""
    limpio = ''.join(c for c in nombre if c not in _CARACTERES_INVALIDOS)
    return limpio[:31] or 'Hoja'


def escribir_excel_multihoja(hojas: List[Dict[str, Any]], destino: Optional[str] = None) -> bytes:
    """
    Genera un libro .xlsx con una hoja por entrada.

    Args:
        hojas: Lista de {'name': str, 'data': [dict], 'column_widths': [int]?}
            Las columnas salen de las claves de la primera fila.
            Una hoja sin datos queda vacía.
        destino: Ruta donde guardar el archivo (opcional)

    Returns:
        Contenido del archivo en bytes
    """
    workbook = Workbook()
    workbook.remove(workbook.active)

    encabezado_font = Font(bold=True)
    encabezado_fill = PatternFill('solid', fgColor='E0E0E0')

    for hoja in hojas:
        worksheet = workbook.create_sheet(_nombre_hoja(hoja['name']))
        data = hoja.get('data') or []
        if not data:
            continue

        columnas = list(data[0].keys())
        anchos = hoja.get('column_widths') or []

        worksheet.append(columnas)
        for fila in data:
            worksheet.append([fila.get(columna) for columna in columnas])

        for celda in worksheet[1]:
            celda.font = encabezado_font
            celda.fill = encabezado_fill

        for idx in range(len(columnas)):
            ancho = anchos[idx] if idx < len(anchos) else ANCHO_DEFAULT
            worksheet.column_dimensions[get_column_letter(idx + 1)].width = ancho

    output = io.BytesIO()
    workbook.save(output)
    contenido = output.getvalue()

    if destino:
        with open(destino, 'wb') as f:
            f.write(contenido)

    return contenido
