"""User-facing message catalog."""

from __future__ import annotations

import os


DEFAULT_LOCALE = "en"

CATALOG: dict[str, dict[str, str]] = {
    "en": {
        "ok": "OK.",
        "no_rows_affected": "No rows affected.",
        "param.required": "Parameter {name} is required",
        "param.type_mismatch": "Parameter {name} must be {expected}",
        "param.invalid": "Parameter {name} is invalid",
        "param.too_long": "Parameter {name} cannot be longer than {length} characters",
        "form.id_empty": "The form id cannot be empty",
        "form.identifier_empty": "The identifier cannot be empty",
        "form.identifier_not_string": "The identifier must be a text string",
        "form.identifier_short": "The identifier cannot be shorter than 3 characters",
        "form.identifier_long": "The identifier cannot be longer than 64 characters",
        "form.identifier_charset": "The identifier can only contain a-z, A-Z, 0-9, \"-\" and \"_\"",
        "form.name_empty": "The name cannot be empty",
        "form.name_not_string": "The name must be a text string",
        "form.name_short": "The name cannot be shorter than 3 characters",
        "form.state_empty": "The state cannot be empty",
        "form.privacy_empty": "The privacy cannot be empty",
        "form.exists": "A form with this identifier already exists",
        "form.not_found": "Form not found",
        "form.no_columns": "You must create columns before saving information",
        "form.linked": "Other forms link to this form; delete those columns first",
        "column.exists": "A column with this identifier already exists in the form",
        "column.reserved": "The identifier \"id\" is reserved",
        "column.type_unknown": "Unknown column type",
        "column.link_required": "Link columns must reference a form",
        "column.link_not_found": "The linked form does not exist in this space",
        "column.link_incomplete": "The linked form needs at least one column besides the id",
        "column.not_found": "Column not found",
        "column.primary_key": "The id column cannot be modified or deleted",
        "record.id_empty": "The id cannot be empty",
        "record.link_missing": "The linked record {value} does not exist ({column})",
        "record.nothing_to_update": "No values were sent for this record",
        "file.not_found": "File not found in the current form",
        "file.unsupported": "Unsupported file",
        "file.too_large": "The file must be smaller than {limit}",
        "file.upload_failed": "The file could not be uploaded",
        "file.delete_failed": "The file could not be deleted",
    },
    "es": {
        "ok": "OK.",
        "no_rows_affected": "Ningún registro afectado.",
        "param.required": "El parámetro {name} es obligatorio",
        "param.type_mismatch": "El parámetro {name} debe ser {expected}",
        "param.invalid": "El parámetro {name} no es válido",
        "param.too_long": "El parámetro {name} no puede tener más de {length} caracteres",
        "form.id_empty": "El id del formulario no puede estar vacío",
        "form.identifier_empty": "El identificador no puede estar vacío",
        "form.identifier_not_string": "El identificador debe ser una cadena de texto",
        "form.identifier_short": "El identificador no puede ser menor a 3 dígitos",
        "form.identifier_long": "El identificador no puede ser mayor a 64 dígitos",
        "form.identifier_charset": "El identificador solo puede tener a-z, A-Z, 0-9, \"-\" y \"_\"",
        "form.name_empty": "El nombre no puede estar vacío",
        "form.name_not_string": "El nombre debe ser una cadena de texto",
        "form.name_short": "El nombre no puede ser menor a 3 dígitos",
        "form.state_empty": "El estado no puede estar vacío",
        "form.privacy_empty": "La privacidad no puede estar vacía",
        "form.exists": "Un formulario con este identificador ya existe",
        "form.not_found": "Formulario no encontrado",
        "form.no_columns": "Debes crear columnas para poder guardar información",
        "form.linked": "Otros formularios enlazan a este formulario; elimina esas columnas primero",
        "column.exists": "Una columna con este identificador ya existe en el formulario",
        "column.reserved": "El identificador \"id\" está reservado",
        "column.type_unknown": "Tipo de columna desconocido",
        "column.link_required": "Las columnas de enlace deben referenciar un formulario",
        "column.link_not_found": "El formulario enlazado no existe en este espacio",
        "column.link_incomplete": "El formulario enlazado necesita al menos una columna además del id",
        "column.not_found": "Columna no encontrada",
        "column.primary_key": "La columna id no puede modificarse ni eliminarse",
        "record.id_empty": "El id no puede estar vacío",
        "record.link_missing": "El registro enlazado {value} no existe ({column})",
        "record.nothing_to_update": "No se enviaron valores para este registro",
        "file.not_found": "Archivo no encontrado en el formulario actual",
        "file.unsupported": "Archivo no soportado.",
        "file.too_large": "El archivo debe ser de menos de {limit}.",
        "file.upload_failed": "Error al subir el archivo.",
        "file.delete_failed": "No se pudo eliminar el archivo.",
    },
}


def current_locale() -> str:
    locale = (os.getenv("STRUCTBI_LOCALE") or DEFAULT_LOCALE).strip().lower()
    return locale if locale in CATALOG else DEFAULT_LOCALE


def t(key: str, **params) -> str:
    table = CATALOG[current_locale()]
    template = table.get(key) or CATALOG[DEFAULT_LOCALE].get(key) or key
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template
