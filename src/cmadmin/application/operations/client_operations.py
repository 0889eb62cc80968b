"""
Client notification operations (SMS_ClientOperation).

Fast-channel actions pushed to every client in a collection, or to selected
resources within it.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import List, Optional, Sequence

from cmadmin.application.client import CMClient
from cmadmin.domain.errors import ConfigurationError
from cmadmin.domain.filters import Comparison
from cmadmin.domain.models import ManagementObject, MethodResult

logger = logging.getLogger(__name__)

CLIENT_OPERATION_CLASS = "SMS_ClientOperation"


class ClientOperation(IntEnum):
    """Type codes accepted by InitiateClientOperation."""

    FULL_SCAN = 1
    QUICK_SCAN = 2
    DOWNLOAD_DEFINITION = 3
    EVALUATE_SOFTWARE_UPDATES = 4
    REQUEST_MACHINE_POLICY = 8
    REQUEST_USER_POLICY = 9
    DISCOVERY_DATA_COLLECTION = 10
    SOFTWARE_INVENTORY = 11
    HARDWARE_INVENTORY = 12
    EVALUATE_APPLICATIONS = 13
    EVALUATE_UPDATE_DEPLOYMENTS = 14

    @classmethod
    def parse(cls, value: str | int) -> "ClientOperation":
        """Accept a code, a member name or a dashed name (`hardware-inventory`)."""
        text = str(value).strip()
        try:
            if isinstance(value, int):
                return cls(int(value))
            if text.isdigit():
                return cls(int(text))
            return cls[text.upper().replace("-", "_")]
        except (KeyError, ValueError):
            valid = ", ".join(m.name.lower().replace("_", "-") for m in cls)
            raise ConfigurationError(f"Unknown client operation {value!r} (valid: {valid})") from None


def initiate_client_operation(
    client: CMClient,
    operation: ClientOperation | str | int,
    target_collection_id: str,
    resource_ids: Optional[Sequence[int]] = None,
    random_minutes: int = 0,
) -> MethodResult:
    """
    Push a client notification to a collection.

    Returns:
        MethodResult; `OperationID` identifies the queued operation
    """
    operation = ClientOperation.parse(operation)
    if not target_collection_id:
        raise ConfigurationError("A target collection is required")
    if random_minutes < 0:
        raise ConfigurationError("Randomization window cannot be negative")

    arguments = {
        "Type": int(operation),
        "TargetCollectionID": target_collection_id,
        "RandomizationWindow": int(random_minutes),
    }
    if resource_ids:
        arguments["TargetResourceIDs"] = [int(r) for r in resource_ids]

    logger.info(
        "Requesting %s on collection %s%s",
        operation.name,
        target_collection_id,
        f" ({len(resource_ids)} resources)" if resource_ids else "",
    )
    return client.invoke(CLIENT_OPERATION_CLASS, "InitiateClientOperation", arguments)


def cancel_client_operation(client: CMClient, operation_id: int) -> MethodResult:
    return client.invoke(CLIENT_OPERATION_CLASS, "CancelClientOperation", {"OperationID": int(operation_id)})


def list_client_operations(client: CMClient, collection_id: Optional[str] = None) -> List[ManagementObject]:
    flt = Comparison("TargetCollectionID", "=", collection_id) if collection_id else ""
    return list(client.query(CLIENT_OPERATION_CLASS, flt))
