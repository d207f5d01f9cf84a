"""
Document Validation - JSON schema checks for observed store documents.

Documents read back from the remote store are validated before a provider
rewrites them, so a resource of an unexpected shape is rejected instead of
being overwritten.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

OBSERVED_DOCUMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["metadata", "spec"],
    "properties": {
        "apiVersion": {"type": "string"},
        "kind": {"type": "string"},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string"},
                "namespace": {"type": "string"},
                "resourceVersion": {"type": "string"},
            },
        },
        "spec": {"type": "object"},
    },
}

_validator = Draft7Validator(OBSERVED_DOCUMENT_SCHEMA)


def validate_observed_document(doc: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate the outer shape of a document fetched from the store.

    Args:
        doc: The document as returned by the store

    Returns:
        Tuple of (is_valid, error_message)
    """
    errors = list(_validator.iter_errors(doc))
    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    message = "; ".join(error_messages)
    logger.debug(f"Observed document failed validation: {message}")
    return False, message
