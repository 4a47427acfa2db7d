# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""obs-websocket v5 protocol constants used by lapreplay"""

RPC_VERSION = 1
SUBPROTOCOL_JSON = "obswebsocket.json"

# WebSocketOpCode
OP_HELLO = 0
OP_IDENTIFY = 1
OP_IDENTIFIED = 2
OP_EVENT = 5
OP_REQUEST = 6
OP_REQUEST_RESPONSE = 7
OP_REQUEST_BATCH = 8
OP_REQUEST_BATCH_RESPONSE = 9

# EventSubscription.All: every category except the high-volume ones
EVENT_SUBSCRIPTION_ALL = (1 << 11) - 1

# RequestBatchExecutionType.SerialRealtime
BATCH_SERIAL_REALTIME = 0

# RequestStatus
STATUS_SUCCESS = 100
STATUS_INVALID_RESOURCE_STATE = 604

# Request types
TOGGLE_REPLAY_BUFFER = "ToggleReplayBuffer"
SAVE_REPLAY_BUFFER = "SaveReplayBuffer"
GET_REPLAY_BUFFER_STATUS = "GetReplayBufferStatus"
SET_SCENE_ITEM_ENABLED = "SetSceneItemEnabled"
SET_INPUT_SETTINGS = "SetInputSettings"
TRIGGER_MEDIA_INPUT_ACTION = "TriggerMediaInputAction"
GET_MEDIA_INPUT_STATUS = "GetMediaInputStatus"
SET_MEDIA_INPUT_CURSOR = "SetMediaInputCursor"
SET_CURRENT_PROGRAM_SCENE = "SetCurrentProgramScene"
GET_CURRENT_PROGRAM_SCENE = "GetCurrentProgramScene"
GET_SCENE_LIST = "GetSceneList"
GET_SCENE_ITEM_LIST = "GetSceneItemList"

# ObsMediaInputAction
MEDIA_ACTION_PLAY = "OBS_WEBSOCKET_MEDIA_INPUT_ACTION_PLAY"
MEDIA_ACTION_PAUSE = "OBS_WEBSOCKET_MEDIA_INPUT_ACTION_PAUSE"

# ObsMediaState
MEDIA_STATE_PLAYING = "OBS_MEDIA_STATE_PLAYING"
MEDIA_STATE_PAUSED = "OBS_MEDIA_STATE_PAUSED"

# ObsOutputState
OUTPUT_STARTING = "OBS_WEBSOCKET_OUTPUT_STARTING"
OUTPUT_STARTED = "OBS_WEBSOCKET_OUTPUT_STARTED"
OUTPUT_STOPPING = "OBS_WEBSOCKET_OUTPUT_STOPPING"
OUTPUT_STOPPED = "OBS_WEBSOCKET_OUTPUT_STOPPED"
