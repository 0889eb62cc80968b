"""
Driver catalog and driver package operations.

Drivers are imported from an INF on a UNC share with SMS_Driver.CreateFromINF,
which returns an uncommitted SMS_Driver; committing it adds the driver to the
catalog. Driver packages then reference the driver's content.
"""

from __future__ import annotations

import logging
from pathlib import Path, PureWindowsPath
from typing import Any, Dict, List, Optional

from cmadmin.application.client import CMClient
from cmadmin.domain.errors import ConfigurationError, ObjectNotFoundError
from cmadmin.domain.filters import Comparison
from cmadmin.domain.models import ManagementObject, MethodResult

logger = logging.getLogger(__name__)

DRIVER_CLASS = "SMS_Driver"
DRIVER_PACKAGE_CLASS = "SMS_DriverPackage"
CI_TO_CONTENT_CLASS = "SMS_CIToContent"

# PkgSourceFlag: read content directly from the source path
STORAGE_DIRECT = 2


def list_driver_infs(folder: Path) -> List[Path]:
    """All .inf files below `folder`, sorted."""
    folder = Path(folder)
    if not folder.is_dir():
        raise ConfigurationError(f"Driver folder not found: {folder}")
    return sorted(p for p in folder.rglob("*") if p.is_file() and p.suffix.lower() == ".inf")


def find_driver_package(client: CMClient, name: str) -> Optional[ManagementObject]:
    return client.query_one(DRIVER_PACKAGE_CLASS, Comparison("Name", "=", name))


def create_driver_package(
    client: CMClient,
    name: str,
    source_path: str,
    description: str = "",
) -> ManagementObject:
    """Create a driver package unless one with the same name exists."""
    if not name or not source_path:
        raise ConfigurationError("Driver package name and source path are required")
    existing = find_driver_package(client, name)
    if existing is not None:
        logger.info("Driver package %r already exists (%s)", name, existing.get("PackageID"))
        return existing
    return client.create(
        DRIVER_PACKAGE_CLASS,
        {
            "Name": name,
            "Description": description,
            "PkgSourcePath": source_path,
            "PkgSourceFlag": STORAGE_DIRECT,
        },
    )


def import_driver(
    client: CMClient,
    inf_path: str,
    enable: bool = True,
    allow_mismatch: bool = True,
    extra_properties: Optional[Dict[str, Any]] = None,
) -> ManagementObject:
    r"""
    Import one driver into the catalog.

    `inf_path` is the full UNC path of the INF (\\server\share\drv\x.inf);
    the provider reads it from there, not from this machine.
    """
    path = PureWindowsPath(inf_path)
    if path.suffix.lower() != ".inf":
        raise ConfigurationError(f"Not an INF file: {inf_path}")
    if not str(path).startswith("\\\\"):
        raise ConfigurationError(f"Driver source must be a UNC path: {inf_path}")

    result = client.invoke(
        DRIVER_CLASS,
        "CreateFromINF",
        {"DriverPath": str(path.parent), "INFFile": path.name},
    )
    template = result.get("Driver")
    if not result.succeeded or not isinstance(template, ManagementObject):
        raise ConfigurationError(
            f"{DRIVER_CLASS}.CreateFromINF did not return a driver for {inf_path} "
            f"(ReturnValue {result.return_value})"
        )

    properties = dict(template.properties)
    properties["IsEnabled"] = enable
    properties["IsHardwareIDsMismatchAllowed"] = allow_mismatch
    properties.update(extra_properties or {})
    driver = client.create(DRIVER_CLASS, properties)
    logger.info("Imported driver %s (CI_ID %s)", path.name, driver.get("CI_ID"))
    return driver


def add_driver_to_package(
    client: CMClient,
    driver: ManagementObject,
    package: ManagementObject,
    refresh_dps: bool = False,
) -> MethodResult:
    """Add a catalog driver's content to a driver package."""
    ci_id = driver.get("CI_ID")
    contents = list(client.query(CI_TO_CONTENT_CLASS, Comparison("CI_ID", "=", ci_id)))
    if not contents:
        raise ObjectNotFoundError(CI_TO_CONTENT_CLASS, f"CI_ID = {ci_id}")

    source = driver.get("ContentSourcePath")
    return client.invoke(
        package,
        "AddDriverContent",
        {
            "ContentIDs": [int(c["ContentID"]) for c in contents],
            "ContentSourcePath": [source] * len(contents),
            "bRefreshDPs": refresh_dps,
        },
    )
