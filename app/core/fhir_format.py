"""
Serialización de recursos FHIR (dicts R4) a JSON o XML.

XML sigue las convenciones FHIR: namespace http://hl7.org/fhir, el elemento
raíz es el resourceType, los primitivos van en el atributo `value`, los
arrays se repiten y los recursos anidados se envuelven con su tipo.
"""

import json
import xml.etree.ElementTree as ET

from fastapi import Response

from app.core.exceptions import ValidationException

FHIR_NS = "http://hl7.org/fhir"
JSON_MEDIA_TYPE = "application/fhir+json"
XML_MEDIA_TYPE = "application/fhir+xml"

ET.register_namespace("", FHIR_NS)

_FORMATS = {
    "json": "json",
    "application/json": "json",
    "application/fhir+json": "json",
    "xml": "xml",
    "text/xml": "xml",
    "application/xml": "xml",
    "application/fhir+xml": "xml",
}


def resolve_format(value: str | None) -> str:
    """Normaliza `_format`; None equivale a json."""
    if value is None or not value.strip():
        return "json"
    fmt = _FORMATS.get(value.strip().lower())
    if fmt is None:
        raise ValidationException(f"Formato no soportado: '{value}'. Use json o xml")
    return fmt


def _tag(name: str) -> str:
    return f"{{{FHIR_NS}}}{name}"


def _primitive(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _append(parent: ET.Element, name: str, value) -> None:
    if value is None:
        return
    if isinstance(value, list):
        for item in value:
            _append(parent, name, item)
        return

    element = ET.SubElement(parent, _tag(name))
    if isinstance(value, dict):
        if "resourceType" in value:
            element.append(_resource_element(value))
            return
        for key, child in value.items():
            if key == "url" and name == "extension":
                element.set("url", str(child))
            else:
                _append(element, key, child)
    else:
        element.set("value", _primitive(value))


def _resource_element(resource: dict) -> ET.Element:
    root = ET.Element(_tag(resource["resourceType"]))
    for key, value in resource.items():
        if key == "resourceType":
            continue
        _append(root, key, value)
    return root


def to_xml(resource: dict) -> str:
    root = _resource_element(resource)
    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def to_json(resource: dict) -> str:
    return json.dumps(resource, ensure_ascii=False, indent=2)


def render(resource: dict, fmt: str | None = "json") -> tuple[str, str]:
    """Devuelve (cuerpo, media type) para el formato pedido."""
    if resolve_format(fmt) == "xml":
        return to_xml(resource), XML_MEDIA_TYPE
    return to_json(resource), JSON_MEDIA_TYPE


def fhir_response(resource: dict, fmt: str | None = "json", status_code: int = 200) -> Response:
    body, media_type = render(resource, fmt)
    return Response(content=body, media_type=media_type, status_code=status_code)
