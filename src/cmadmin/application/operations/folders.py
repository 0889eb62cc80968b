"""
Console folder operations (SMS_ObjectContainerNode / SMS_ObjectContainerItem).

Folder id 0 is the root node of every object type; it has no
SMS_ObjectContainerNode instance.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Optional, Sequence

from cmadmin.application.client import CMClient
from cmadmin.domain.errors import ConfigurationError, ObjectNotFoundError
from cmadmin.domain.filters import Comparison, all_of
from cmadmin.domain.models import ManagementObject, MethodResult

logger = logging.getLogger(__name__)

FOLDER_CLASS = "SMS_ObjectContainerNode"
FOLDER_ITEM_CLASS = "SMS_ObjectContainerItem"
ROOT_FOLDER_ID = 0


class FolderObjectType(IntEnum):
    """ObjectType codes of the common console folder trees."""

    PACKAGE = 2
    ADVERTISEMENT = 3
    QUERY = 7
    REPORT = 8
    METERED_PRODUCT_RULE = 9
    CONFIGURATION_ITEM = 11
    OPERATING_SYSTEM_INSTALL_PACKAGE = 14
    STATE_MIGRATION = 17
    IMAGE_PACKAGE = 18
    BOOT_IMAGE_PACKAGE = 19
    TASK_SEQUENCE_PACKAGE = 20
    DEVICE_SETTING_PACKAGE = 21
    DRIVER_PACKAGE = 23
    DRIVER = 25
    SOFTWARE_UPDATE = 1011
    DEVICE_COLLECTION = 5000
    USER_COLLECTION = 5001
    APPLICATION = 6000
    CONFIGURATION_BASELINE = 6001


def get_folder(
    client: CMClient,
    name: str,
    object_type: int,
    parent_id: Optional[int] = None,
) -> Optional[ManagementObject]:
    """Folder by name within an object type tree (and parent, if given)."""
    parts = [Comparison("Name", "=", name), Comparison("ObjectType", "=", int(object_type))]
    if parent_id is not None:
        parts.append(Comparison("ParentContainerNodeID", "=", int(parent_id)))
    return client.query_one(FOLDER_CLASS, all_of(*parts))


def get_folder_by_id(client: CMClient, folder_id: int) -> Optional[ManagementObject]:
    return client.query_one(FOLDER_CLASS, Comparison("ContainerNodeID", "=", int(folder_id)))


def create_folder(
    client: CMClient,
    name: str,
    object_type: int,
    parent_id: int = ROOT_FOLDER_ID,
) -> ManagementObject:
    """Create a folder, or return the existing one with the same name and parent."""
    if not name or not name.strip():
        raise ConfigurationError("Folder name is required")
    existing = get_folder(client, name, object_type, parent_id)
    if existing is not None:
        logger.info("Folder %r already exists (id %s)", name, existing.get("ContainerNodeID"))
        return existing
    return client.create(
        FOLDER_CLASS,
        {
            "Name": name.strip(),
            "ObjectType": int(object_type),
            "ParentContainerNodeID": int(parent_id),
        },
    )


def _check_folder(client: CMClient, folder_id: int, object_type: int) -> None:
    if int(folder_id) == ROOT_FOLDER_ID:
        return
    folder = get_folder_by_id(client, folder_id)
    if folder is None:
        raise ObjectNotFoundError(FOLDER_CLASS, f"ContainerNodeID = {folder_id}")
    if int(folder.get("ObjectType", -1)) != int(object_type):
        raise ConfigurationError(
            f"Folder {folder_id} holds object type {folder.get('ObjectType')}, not {int(object_type)}"
        )


def move_items(
    client: CMClient,
    item_ids: Sequence[str],
    object_type: int,
    source_folder_id: int,
    target_folder_id: int,
) -> MethodResult:
    """
    Move console items between two folders of the same tree.

    Both folders must exist (the root, id 0, always does) and belong to
    `object_type`; otherwise nothing is invoked.

    Raises:
        ConfigurationError: No items, or a folder of another object type
        ObjectNotFoundError: A folder id does not exist
    """
    items = [str(i) for i in item_ids or [] if str(i).strip()]
    if not items:
        raise ConfigurationError("No items to move")
    if int(source_folder_id) == int(target_folder_id):
        raise ConfigurationError("Source and target folder are the same")

    _check_folder(client, source_folder_id, object_type)
    _check_folder(client, target_folder_id, object_type)

    logger.info("Moving %d item(s) from folder %s to %s", len(items), source_folder_id, target_folder_id)
    return client.invoke(
        FOLDER_ITEM_CLASS,
        "MoveMembers",
        {
            "InstanceKeys": items,
            "ContainerNodeID": int(source_folder_id),
            "TargetContainerNodeID": int(target_folder_id),
            "ObjectType": int(object_type),
        },
    )
