"""
Certificate rendering seam.

Visual layout (fonts, coordinates, rasterisation) belongs to an external
renderer. The engine only hands it a template and a flat field map and gets
back something deliverable. `FieldMapRenderer` is the built-in fallback used
by the bot: a Markdown card listing the template's fields plus a QR code
linking to the verification page.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from citycup.models.models import CertificateTemplate, ResultStatus
from citycup.services.qr_service import generate_qr_png, verify_url

FIELD_LABELS = {
    "full_name":          "Name",
    "mi_id":              "MI ID",
    "email":              "Email",
    "competition_name":   "Competition",
    "city_name":          "City",
    "event_date":         "Date",
    "result_status":      "Result",
    "position":           "Position",
    "certificate_number": "Certificate №",
}

DEFAULT_FIELDS = ["full_name", "competition_name", "city_name", "result_status", "certificate_number"]

RESULT_LABELS = {
    ResultStatus.WINNER:       "🥇 Winner",
    ResultStatus.FINALIST:     "🏅 Finalist",
    ResultStatus.PARTICIPATED: "🎗 Participant",
}

SAMPLE_DATA: Dict[str, Any] = {
    "full_name":          "Jane Sample",
    "mi_id":              "MI-000000",
    "email":              "jane.sample@example.com",
    "competition_name":   "Sample Competition",
    "city_name":          "Sample City",
    "event_date":         None,
    "result_status":      ResultStatus.WINNER,
    "position":           1,
    "certificate_number": "PREVIEW",
}


@dataclass
class RenderedCertificate:
    text:   str
    image:  Optional[bytes] = None
    fields: Dict[str, Any] = field(default_factory=dict)


class CertificateRenderer(Protocol):
    def render(self, template: CertificateTemplate, data: Dict[str, Any]) -> RenderedCertificate:
        ...


def _format(key: str, value: Any) -> str:
    if value is None or value == "":
        return "—"
    if key == "result_status":
        return RESULT_LABELS.get(value, str(value))
    if key == "event_date":
        return value.strftime("%d.%m.%Y")
    return str(value)


class FieldMapRenderer:
    """Markdown card + verification QR. Touches no storage."""

    def __init__(self, with_qr: bool = True) -> None:
        self.with_qr = with_qr

    def render(self, template: CertificateTemplate, data: Dict[str, Any]) -> RenderedCertificate:
        keys = [k for k in (template.fields or DEFAULT_FIELDS) if k in FIELD_LABELS]
        values = {k: data.get(k) for k in keys}

        lines = [f"📜 *{template.name}*", ""]
        for k in keys:
            lines.append(f"{FIELD_LABELS[k]}: *{_format(k, values[k])}*")
        text = "\n".join(lines)

        image = None
        number = data.get("certificate_number")
        if self.with_qr and number:
            image = generate_qr_png(verify_url(number))
        return RenderedCertificate(text=text, image=image, fields=values)


default_renderer = FieldMapRenderer()
