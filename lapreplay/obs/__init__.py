# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""obs-websocket client and source discovery"""

from .client import ObsWebSocketClient, RemoteControlClient, build_auth_string
from .scenes import find_source, list_media_sources

__all__ = [
    "ObsWebSocketClient",
    "RemoteControlClient",
    "build_auth_string",
    "find_source",
    "list_media_sources",
]
