# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification sent with every RPC request.

Examples:
    Header attached by :class:`~chainsig_aa.async_client.AbstractAccountClient`::

        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        # {"x-chainsig-aa-client": "chainsig-aa-python/0.1.0"}
"""

import importlib.metadata as metadata

# Package name constant for metadata lookup
PACKAGE_NAME = "chainsig-aa"


class Metadata:
    CLIENT_HEADER = "x-chainsig-aa-client"

    @staticmethod
    def get_client_header_val():
        """
        Value of the identification header, ``chainsig-aa-python/<version>``.

        :raises PackageNotFoundError: If the package is not installed
        """
        version = metadata.version(PACKAGE_NAME)
        return f"chainsig-aa-python/{version}"
