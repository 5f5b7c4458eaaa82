"""Request templates for the ``analyze-text`` endpoint.

A template is the full JSON body of an analyze-text request. The pipeline
only ever changes one value in it: ``analysisInput.documents[0].text``.
Everything else (task kind, model version, domain, language) is taken from
the template as-is, so switching from PII to PHI recognition or changing the
language is a template edit, not a code change.

The text bundled in a template is what gets submitted in default mode, when
no object pool is configured.
"""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from phiscan.core.errors import TemplateError

DEFAULT_TEMPLATE: dict[str, Any] = {
    "kind": "PiiEntityRecognition",
    "parameters": {
        "modelVersion": "latest",
        "domain": "phi",
    },
    "analysisInput": {
        "documents": [
            {
                "id": "1",
                "language": "en",
                "text": (
                    "Patient Jane Doe was admitted on 2023-03-14. "
                    "Contact: jane.doe@example.com, phone 555-123-4567."
                ),
            }
        ]
    },
}


def _first_document(template: dict[str, Any]) -> dict[str, Any]:
    try:
        document = template["analysisInput"]["documents"][0]
    except (KeyError, IndexError, TypeError) as exc:
        raise TemplateError(
            "Request template must contain analysisInput.documents[0]"
        ) from exc
    if not isinstance(document, dict):
        raise TemplateError("analysisInput.documents[0] must be a JSON object")
    return document


def load_template(path: str | Path | None = None) -> dict[str, Any]:
    """Read a request template from *path*; return the built-in one when None.

    Raises
    ------
    TemplateError
        If the file is not valid JSON or lacks the document structure.
    """
    if path is None:
        return copy.deepcopy(DEFAULT_TEMPLATE)
    try:
        template = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise TemplateError(f"Cannot load request template {path}: {exc}") from exc
    _first_document(template)
    return template


def build_request(template: dict[str, Any], text: str) -> dict[str, Any]:
    """Return a copy of *template* with the first document's text replaced."""
    payload = copy.deepcopy(template)
    _first_document(payload)["text"] = text
    return payload


def sample_text(template: dict[str, Any]) -> str:
    """Return the text bundled with *template*."""
    return _first_document(template).get("text", "")
