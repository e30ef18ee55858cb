"""
Mosquitto Manager - Document Store
====================================
Loads and saves the configuration document (data/state.json).

Behavior:
    - Missing file      -> the default document is created, saved, returned.
    - Old schema        -> a document without ``global_settings`` predates
                           the current layout; it is replaced by the default.
    - Unreadable file   -> StoreError. The caller decides what to do; the
                           store never silently substitutes a default for a
                           file it could not parse.
    - Incoming writes   -> validated first (validate_document). A rejected
                           document leaves state.json untouched.

Usage:
    store = DocumentStore("/app/data/state.json")
    doc = store.load()
    doc.listeners.append(...)
    store.save(doc)
"""

import json
import logging
import os
from typing import Any

from pydantic import ValidationError

from brokerctl.errors import DocumentValidationError, StoreError
from brokerctl.model import ConfigurationDocument


logger = logging.getLogger(__name__)


def validate_document(data: Any) -> ConfigurationDocument:
    """
    Structurally check an incoming document (API write, backup import).

    Args:
        data: Decoded JSON value.

    Returns:
        The validated ConfigurationDocument.

    Raises:
        DocumentValidationError: If the value is not a usable document.
    """
    if not isinstance(data, dict):
        raise DocumentValidationError("Invalid configuration format: expected an object")
    if not isinstance(data.get("listeners"), list):
        raise DocumentValidationError("Invalid configuration format: missing listeners")

    try:
        return ConfigurationDocument.model_validate(data)
    except ValidationError as e:
        raise DocumentValidationError(f"Invalid configuration format: {e}") from e


class DocumentStore:
    """
    File-backed persistence for the configuration document.

    Attributes:
        state_file: Absolute path to state.json.
    """

    def __init__(self, state_file: str):
        self.state_file = state_file

    def exists(self) -> bool:
        return os.path.exists(self.state_file)

    def load(self) -> ConfigurationDocument:
        """
        Read the document, bootstrapping or resetting it when needed.

        Returns:
            The current ConfigurationDocument.

        Raises:
            StoreError: If the file exists but cannot be read or parsed.
        """
        if not self.exists():
            logger.info("[STORE] State file not found, creating default.")
            doc = ConfigurationDocument.default()
            self.save(doc)
            return doc

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read {self.state_file}: {e}") from e

        if not isinstance(raw, dict) or "global_settings" not in raw:
            logger.warning("[STORE] Detected old state schema. Resetting to new default.")
            doc = ConfigurationDocument.default()
            self.save(doc)
            return doc

        try:
            return ConfigurationDocument.model_validate(raw)
        except ValidationError as e:
            raise StoreError(f"State file {self.state_file} is invalid: {e}") from e

    def save(self, doc: ConfigurationDocument) -> None:
        """
        Persist the document. The previous file is replaced atomically.

        Raises:
            StoreError: If the file cannot be written.
        """
        directory = os.path.dirname(self.state_file)
        tmp_path = self.state_file + ".tmp"
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(doc.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.state_file)
        except OSError as e:
            raise StoreError(f"Failed to write {self.state_file}: {e}") from e

    def replace(self, data: Any) -> ConfigurationDocument:
        """
        Full-document replace from an API write or import.

        An incoming document without administrators keeps the stored ones:
        the administrator list never becomes empty through a write.

        Args:
            data: Decoded JSON value for the new document.

        Returns:
            The validated document that was saved.

        Raises:
            DocumentValidationError: If ``data`` is malformed (nothing saved).
            StoreError: If saving fails.
        """
        doc = validate_document(data)
        if not doc.administrators and self.exists():
            current = self.load()
            if current.administrators:
                logger.info("[STORE] Incoming document has no administrators, keeping the stored ones")
                doc.administrators = current.administrators
        self.save(doc)
        return doc
