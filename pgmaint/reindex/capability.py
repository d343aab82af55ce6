# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging

from pgmaint.db.connection import CatalogClient
from pgmaint.exceptions import DatabaseClientError, PreconditionError

logger = logging.getLogger(__name__)

# REINDEX ... CONCURRENTLY exists since PostgreSQL 12
MIN_CONCURRENT_VERSION = 120000
UNKNOWN_VERSION = 0


def probe(client: CatalogClient) -> int:
    """
    Return the server's version number, or UNKNOWN_VERSION when it cannot be read.

    Connection and authentication problems are not raised here; whether they
    are fatal is decided by check_concurrency_support.
    """
    try:
        version = client.server_version_num()
    except DatabaseClientError as e:
        logger.warning(f"Could not determine server version: {e.message}")
        return UNKNOWN_VERSION
    logger.info(f"server_version_num={version}")
    return version


def check_concurrency_support(version: int, concurrently: bool) -> None:
    """Raise PreconditionError when CONCURRENTLY is requested but unsupported."""
    if concurrently and version < MIN_CONCURRENT_VERSION:
        raise PreconditionError(
            f"server_version_num={version} (< {MIN_CONCURRENT_VERSION}). "
            "REINDEX CONCURRENTLY requires PostgreSQL >= 12. Rerun with --concurrently false"
        )
