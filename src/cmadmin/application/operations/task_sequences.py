"""
Task sequence export and import.

The step tree of a task sequence package lives in the lazy `Sequence`
property, so exports use the legacy query path.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from cmadmin.application.client import CMClient
from cmadmin.domain.errors import ConfigurationError, ObjectNotFoundError
from cmadmin.domain.filters import Comparison
from cmadmin.domain.models import ManagementObject

logger = logging.getLogger(__name__)

TASK_SEQUENCE_PACKAGE_CLASS = "SMS_TaskSequencePackage"

_PACKAGE_ID_RE = re.compile(r'PackageID="([^"]+)"', re.IGNORECASE)


def get_task_sequence(client: CMClient, package_id: str) -> ManagementObject:
    flt = Comparison("PackageID", "=", package_id)
    package = client.query_one(TASK_SEQUENCE_PACKAGE_CLASS, flt, lazy_properties=True)
    if package is None:
        raise ObjectNotFoundError(TASK_SEQUENCE_PACKAGE_CLASS, str(flt))
    return package


def export_task_sequence(client: CMClient, package_id: str, path: Path) -> Path:
    """Write the task sequence of `package_id` to `path` as XML."""
    package = get_task_sequence(client, package_id)
    sequence = package.get("Sequence")
    if sequence is None:
        sequence = client.get_instance(package).get("Sequence")
    if sequence is None:
        raise ConfigurationError(f"Task sequence {package_id} has no sequence")

    result = client.invoke(TASK_SEQUENCE_PACKAGE_CLASS, "ExportXml", {"Sequence": sequence})
    xml = result.get("ReturnValue")
    if not isinstance(xml, str) or not xml.strip():
        raise ConfigurationError(f"ExportXml returned no XML for {package_id}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(xml, encoding="utf-8")
    logger.info("Exported task sequence %s to %s", package_id, path)
    return path


def import_task_sequence(
    client: CMClient,
    path: Path,
    name: str,
    description: str = "",
) -> Optional[str]:
    """
    Create a task sequence package from an exported XML file.

    Returns:
        PackageID of the new package, when the provider reports it
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Task sequence file not found: {path}")
    if not name:
        raise ConfigurationError("A task sequence name is required")

    imported = client.invoke(
        TASK_SEQUENCE_PACKAGE_CLASS,
        "ImportSequence",
        {"TaskSequenceXML": path.read_text(encoding="utf-8")},
    )
    sequence = imported.get("TaskSequence")
    if not imported.succeeded or sequence is None:
        raise ConfigurationError(f"ImportSequence rejected {path} (ReturnValue {imported.return_value})")

    package = client.create(
        TASK_SEQUENCE_PACKAGE_CLASS,
        {"Name": name, "Description": description},
        client_only=True,
    )
    saved = client.invoke(
        TASK_SEQUENCE_PACKAGE_CLASS,
        "SetSequence",
        {"TaskSequencePackage": package, "TaskSequence": sequence},
    )
    saved_path = saved.get("SavedTaskSequencePackagePath") or ""
    match = _PACKAGE_ID_RE.search(saved_path)
    package_id = match.group(1) if match else None
    logger.info("Imported task sequence %r as %s", name, package_id or saved_path or "?")
    return package_id
