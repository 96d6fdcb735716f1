"""multipart/form-data encoding for receipt uploads.

The body is assembled part by part with urllib3's field encoder so that the
file part stays second, after ``company_id``.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import shutil
from typing import Dict, List, Optional, Tuple

from urllib3.fields import RequestField
from urllib3.filepost import encode_multipart_formdata

from ffbox.errors import EncodingError
from ffbox.models import ReceiptCreateParams

logger = logging.getLogger(__name__)

RECEIPT_FIELD_NAME = "receipt"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Optional parts, in the order they are written.
OPTIONAL_FIELD_NAMES = (
    "description",
    "document_type",
    "qualified_invoice",
    "receipt_metadatum_amount",
    "receipt_metadatum_issue_date",
    "receipt_metadatum_partner_name",
)


def _text_field(name: str, value: str) -> RequestField:
    try:
        field = RequestField(name=name, data=value)
        field.make_multipart(content_disposition="form-data")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"write {name}", exc) from exc
    return field


def _read_receipt(params: ReceiptCreateParams) -> bytes:
    try:
        reader = params.receipt.open()
    except OSError as exc:
        raise EncodingError("get receipt reader", exc) from exc
    try:
        buf = io.BytesIO()
        shutil.copyfileobj(reader, buf)
        return buf.getvalue()
    except OSError as exc:
        raise EncodingError("copy receipt file", exc) from exc
    finally:
        reader.close()


def _file_field(filename: str, content: bytes) -> RequestField:
    content_type = mimetypes.guess_type(filename)[0] or DEFAULT_CONTENT_TYPE
    try:
        field = RequestField(name=RECEIPT_FIELD_NAME, data=content, filename=filename)
        field.make_multipart(content_disposition="form-data", content_type=content_type)
    except (TypeError, ValueError) as exc:
        raise EncodingError("create form file", exc) from exc
    return field


def describe_receipt_create_params(params: ReceiptCreateParams) -> Dict[str, str]:
    """Return the scalar form fields in wire order, omitting absent values."""
    form = {"company_id": str(params.company_id)}
    for name in OPTIONAL_FIELD_NAMES:
        value = getattr(params, name)
        if value is None:
            continue
        form[name] = str(value)
    return form


def encode_receipt_create_params(
    params: ReceiptCreateParams, boundary: Optional[str] = None
) -> Tuple[bytes, str]:
    """Encode receipt creation parameters as a multipart/form-data body.

    Returns the body and the Content-Type header value including the boundary.
    Parts are written as ``company_id``, ``receipt`` and then each optional
    field that is set, in :data:`OPTIONAL_FIELD_NAMES` order.
    """
    form = describe_receipt_create_params(params)
    parts: List[RequestField] = [_text_field("company_id", form.pop("company_id"))]

    content = _read_receipt(params)
    parts.append(_file_field(params.receipt.filename, content))

    for name, value in form.items():
        parts.append(_text_field(name, value))

    try:
        body, content_type = encode_multipart_formdata(parts, boundary=boundary)
    except (TypeError, ValueError) as exc:
        raise EncodingError("close writer", exc) from exc

    logger.debug(
        "Encoded receipt %s (%d bytes) with parts %s",
        params.receipt.filename,
        len(content),
        [p.headers["Content-Disposition"] for p in parts],
    )
    return body, content_type
