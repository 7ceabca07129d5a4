"""SOAP envelope construction and response parsing.

Responses are turned into a generic tree of dicts, lists and strings:
namespaces are dropped, leaf elements become their stripped text and
sibling elements sharing a name are collected into a list.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, Mapping
from xml.sax.saxutils import escape

from ..exceptions import ExternalServiceError
from .models import STATUS_OK

logger = logging.getLogger(__name__)

SERVICE_NAME = "revenue-service"
NAMESPACE = "http://tempuri.org/"

# Characters that are not allowed anywhere in an XML 1.0 document
_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f]")

ENVELOPE_TEMPLATE = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<soap:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    'xmlns:xsd="http://www.w3.org/2001/XMLSchema" '
    'xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
    "<soap:Body>"
    '<{operation} xmlns="{namespace}">{body}</{operation}>'
    "</soap:Body>"
    "</soap:Envelope>"
)


def xml_escape(value: Any) -> str:
    """Escape a parameter value for element content, dropping control characters."""
    text = "" if value is None else str(value)
    return escape(_INVALID_XML_CHARS.sub("", text))


def build_envelope(operation: str, params: Mapping[str, Any]) -> str:
    """Build a SOAP 1.1 request envelope.

    Args:
        operation: SOAP operation name, e.g. ``get_waybills``.
        params: Parameter elements, in order.

    Returns:
        The envelope as text.
    """
    body = "".join(
        f"<{name}>{xml_escape(value)}</{name}>" for name, value in params.items()
    )
    return ENVELOPE_TEMPLATE.format(operation=operation, namespace=NAMESPACE, body=body)


def soap_action(operation: str) -> str:
    """Value of the SOAPAction header for an operation."""
    return f'"{NAMESPACE}{operation}"'


def local_name(tag: str) -> str:
    """Strip a ``{namespace}`` or ``prefix:`` qualifier from an element tag."""
    if tag.startswith("{"):
        tag = tag.split("}", 1)[1]
    return tag.rsplit(":", 1)[-1]


def element_to_tree(element: ET.Element) -> Dict[str, Any]:
    """Convert an element's children into the generic tree form."""
    tree: Dict[str, Any] = {}
    for child in element:
        name = local_name(child.tag)
        value: Any = element_to_tree(child) if len(child) else (child.text or "").strip()
        if name not in tree:
            tree[name] = value
        elif isinstance(tree[name], list):
            tree[name].append(value)
        else:
            tree[name] = [tree[name], value]
    return tree


def parse_response(xml_text: str, operation: str) -> Dict[str, Any]:
    """Parse a SOAP response and return the tree under ``<operation>Result``.

    Args:
        xml_text: Raw response body.
        operation: Operation that was called.

    Returns:
        The result tree, or an empty dict when the response has no result node.

    Raises:
        ExternalServiceError: If the body is not XML, declares a DTD or
            carries a SOAP fault.
    """
    if "<!DOCTYPE" in xml_text[:1024].upper():
        raise ExternalServiceError(SERVICE_NAME, "Refusing response with a DTD")

    try:
        root = ET.fromstring(xml_text.encode("utf-8"))
    except ET.ParseError as e:
        raise ExternalServiceError(SERVICE_NAME, f"Malformed SOAP response: {e}") from e

    result_name = f"{operation}Result"
    result_node = None
    for element in root.iter():
        name = local_name(element.tag)
        if name == "faultstring":
            raise ExternalServiceError(SERVICE_NAME, (element.text or "SOAP fault").strip())
        if name == result_name and result_node is None:
            result_node = element

    if result_node is None:
        logger.debug(f"SOAP response for {operation} has no {result_name} node")
        return {}
    return element_to_tree(result_node)


def read_status(tree: Mapping[str, Any]) -> int:
    """Read the status code of a result tree.

    The code sits either at ``STATUS`` or at ``RESULT/STATUS``. A missing or
    non-numeric code counts as success.
    """
    status = tree.get("STATUS")
    if status is None:
        inner = tree.get("RESULT")
        if isinstance(inner, Mapping):
            status = inner.get("STATUS")
    if status is None or isinstance(status, (dict, list)):
        return STATUS_OK
    try:
        return int(str(status).strip())
    except ValueError:
        return STATUS_OK
