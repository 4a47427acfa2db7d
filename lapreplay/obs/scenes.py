# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Discovery of the media sources replays can be played through"""

import logging
from typing import Iterable, List, Optional

from lapreplay.core.models import RemoteTargetSource

from . import protocol
from .client import RemoteControlClient, failed_results

logger = logging.getLogger("lapreplay.obs.scenes")

DEFAULT_SOURCE_KINDS = ("vlc_source",)


async def list_media_sources(
    client: RemoteControlClient, kinds: Iterable[str] = DEFAULT_SOURCE_KINDS
) -> List[RemoteTargetSource]:
    """
    Enumerate scene items whose input kind is selectable.

    Groups are skipped. Scenes are visited in the mixer's order.
    """
    kinds = set(kinds)
    scene_list = await client.call(protocol.GET_SCENE_LIST)
    scene_names = [scene["sceneName"] for scene in scene_list.get("scenes", [])]
    if not scene_names:
        return []

    results = await client.call_batch(
        [
            {
                "requestType": protocol.GET_SCENE_ITEM_LIST,
                "requestData": {"sceneName": name},
            }
            for name in scene_names
        ]
    )
    for failed in failed_results(results):
        logger.warning(f"Scene item listing failed: {failed.get('requestStatus')}")

    sources = []
    for scene_name, result in zip(scene_names, results):
        items = (result.get("responseData") or {}).get("sceneItems", [])
        for item in items:
            if item.get("isGroup"):
                continue
            if item.get("inputKind") not in kinds:
                continue
            sources.append(
                RemoteTargetSource(
                    scene_name=scene_name,
                    item_name=item["sourceName"],
                    scene_item_id=item["sceneItemId"],
                )
            )
    return sources


async def find_source(
    client: RemoteControlClient, scene_name: str, item_name: str
) -> Optional[RemoteTargetSource]:
    """Resolve the scene item id of ``item_name`` inside ``scene_name``"""
    response = await client.call(
        protocol.GET_SCENE_ITEM_LIST, {"sceneName": scene_name}
    )
    for item in response.get("sceneItems", []):
        if item.get("sourceName") == item_name:
            return RemoteTargetSource(
                scene_name=scene_name,
                item_name=item_name,
                scene_item_id=item["sceneItemId"],
            )
    return None
