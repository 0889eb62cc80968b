"""
cmadmin - Configuration Manager provider client.

Reaches the SMS provider over CIM (WSMan with DCOM fallback), resolves the
site's provider location and exposes query/create/update/delete/invoke on
provider classes, plus a handful of site operations built on top.

Usage:
    # CLI
    cmadmin --provider-server cm01 --site-code ABC query SMS_Package

    # Programmatic
    from cmadmin import CMClient

    with CMClient() as client:
        client.connect("cm01", "ABC")
        for package in client.query("SMS_Package"):
            print(package["PackageID"], package["Name"])
"""

__version__ = "0.1.0"
__author__ = "cmadmin Team"

from cmadmin.application.client import CMClient

__all__ = ["CMClient", "__version__"]
