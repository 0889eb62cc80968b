"""
Package content distribution.

Content goes to distribution points either through a distribution point
group (SMS_DistributionPointGroup.AddPackages) or to individual servers
(AddDistributionPoints on the package, by NAL path). Each package/DP pair
is an SMS_DistributionPoint instance.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from cmadmin.application.client import CMClient
from cmadmin.domain.errors import ConfigurationError, ObjectNotFoundError
from cmadmin.domain.filters import Comparison, all_of, field_in
from cmadmin.domain.models import ManagementObject, MethodResult

logger = logging.getLogger(__name__)

PACKAGE_BASE_CLASS = "SMS_PackageBaseclass"
DISTRIBUTION_POINT_CLASS = "SMS_DistributionPoint"
DP_GROUP_CLASS = "SMS_DistributionPointGroup"
DP_STATUS_CLASS = "SMS_PackageStatusDistPointsSummarizer"
SYSTEM_RESOURCE_CLASS = "SMS_SystemResourceList"
DP_ROLE = "SMS Distribution Point"


def _require_targets(dp_names: Optional[Sequence[str]], group_names: Optional[Sequence[str]]) -> None:
    if not dp_names and not group_names:
        raise ConfigurationError("Specify distribution point names or group names")


def get_package(client: CMClient, package_id: str) -> ManagementObject:
    flt = Comparison("PackageID", "=", package_id)
    package = client.query_one(PACKAGE_BASE_CLASS, flt)
    if package is None:
        raise ObjectNotFoundError(PACKAGE_BASE_CLASS, str(flt))
    return package


def get_distribution_status(client: CMClient, package_id: str) -> List[ManagementObject]:
    """Per-DP state rows for a package."""
    return list(client.query(DP_STATUS_CLASS, Comparison("PackageID", "=", package_id)))


def _dp_groups(client: CMClient, group_names: Sequence[str]) -> List[ManagementObject]:
    groups = list(client.query(DP_GROUP_CLASS, field_in("Name", group_names)))
    found = {g.get("Name", "").lower() for g in groups}
    missing = [n for n in group_names if n.lower() not in found]
    if missing:
        raise ObjectNotFoundError(DP_GROUP_CLASS, f"Name in {missing}")
    return groups


def _dp_resources(client: CMClient, dp_names: Sequence[str]) -> List[ManagementObject]:
    flt = all_of(Comparison("RoleName", "=", DP_ROLE), field_in("ServerName", dp_names))
    resources = list(client.query(SYSTEM_RESOURCE_CLASS, flt))
    found = {r.get("ServerName", "").lower() for r in resources}
    missing = [n for n in dp_names if n.lower() not in found]
    if missing:
        raise ObjectNotFoundError(SYSTEM_RESOURCE_CLASS, f"distribution point {', '.join(missing)}")
    return resources


def distribute_content(
    client: CMClient,
    package_id: str,
    dp_names: Optional[Sequence[str]] = None,
    group_names: Optional[Sequence[str]] = None,
) -> List[MethodResult]:
    """
    Distribute a package to distribution point groups and/or servers.

    DP names must match the server FQDN as registered in the site. All
    targets are resolved before anything is distributed.
    """
    _require_targets(dp_names, group_names)
    groups = _dp_groups(client, group_names) if group_names else []
    resources = _dp_resources(client, dp_names) if dp_names else []

    results = []
    for group in groups:
        logger.info("Distributing %s to group %s", package_id, group.get("Name"))
        results.append(client.invoke(group, "AddPackages", {"PackageIDs": [package_id]}))

    if resources:
        package = get_package(client, package_id)
        by_site: Dict[str, List[str]] = defaultdict(list)
        for resource in resources:
            by_site[resource.get("SiteCode")].append(resource.get("NALPath"))
        for site_code, nal_paths in by_site.items():
            logger.info("Distributing %s to %d DP(s) in site %s", package_id, len(nal_paths), site_code)
            results.append(client.invoke(
                package,
                "AddDistributionPoints",
                {"SiteCode": site_code, "NALPaths": nal_paths},
            ))
    return results


def remove_content(
    client: CMClient,
    package_id: str,
    dp_names: Optional[Sequence[str]] = None,
    group_names: Optional[Sequence[str]] = None,
) -> int:
    """
    Remove a package from distribution point groups and/or servers.

    Returns:
        Number of groups and DP assignments removed
    """
    _require_targets(dp_names, group_names)
    groups = _dp_groups(client, group_names) if group_names else []
    resources = _dp_resources(client, dp_names) if dp_names else []

    removed = 0
    for group in groups:
        logger.info("Removing %s from group %s", package_id, group.get("Name"))
        result = client.invoke(group, "RemovePackages", {"PackageIDs": [package_id]})
        if result.succeeded:
            removed += 1

    if resources:
        flt = all_of(
            Comparison("PackageID", "=", package_id),
            field_in("ServerNALPath", [r.get("NALPath") for r in resources]),
        )
        removed += client.delete(DISTRIBUTION_POINT_CLASS, filter=flt, missing_ok=True)
    return removed


def redistribute(client: CMClient, package_id: str, server_nal_path: str) -> List[ManagementObject]:
    """Ask one distribution point to refresh its copy of a package."""
    if not server_nal_path:
        raise ConfigurationError("A server NAL path is required")
    flt = all_of(
        Comparison("PackageID", "=", package_id),
        Comparison("ServerNALPath", "=", server_nal_path),
    )
    logger.info("Redistributing %s to %s", package_id, server_nal_path)
    return client.update(DISTRIBUTION_POINT_CLASS, {"RefreshNow": True}, filter=flt, pass_thru=True)
