# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
lapreplay Playback Adapters

- RemoteMediaSyncAdapter: mixer-hosted VLC source
- DryRunAdapter: virtual player for previews and tests
"""

from .dry_run import DryRunAdapter
from .media_source import PrepareReport, RemoteMediaSyncAdapter, source_lock

__all__ = [
    "DryRunAdapter",
    "PrepareReport",
    "RemoteMediaSyncAdapter",
    "source_lock",
]
