"""
Site operations built on CMClient.

Each module is a set of plain functions taking a connected (or lazily
connecting) CMClient as the first argument.
"""

from cmadmin.application.operations.client_operations import (
    ClientOperation,
    cancel_client_operation,
    initiate_client_operation,
    list_client_operations,
)
from cmadmin.application.operations.distribution import (
    distribute_content,
    get_distribution_status,
    redistribute,
    remove_content,
)
from cmadmin.application.operations.driver_packages import (
    add_driver_to_package,
    create_driver_package,
    find_driver_package,
    import_driver,
    list_driver_infs,
)
from cmadmin.application.operations.folders import (
    FolderObjectType,
    create_folder,
    get_folder,
    move_items,
)
from cmadmin.application.operations.task_sequences import (
    export_task_sequence,
    import_task_sequence,
)

__all__ = [
    "ClientOperation",
    "FolderObjectType",
    "add_driver_to_package",
    "cancel_client_operation",
    "create_driver_package",
    "create_folder",
    "distribute_content",
    "export_task_sequence",
    "find_driver_package",
    "get_distribution_status",
    "get_folder",
    "import_driver",
    "import_task_sequence",
    "initiate_client_operation",
    "list_client_operations",
    "list_driver_infs",
    "move_items",
    "redistribute",
    "remove_content",
]
