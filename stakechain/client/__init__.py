# MIT License
# Copyright (c) 2025 Hashborn

"""
Client side: RPC collaborator, confirmation poller and staking client.
"""

from .rpc import HttpRpcClient, RpcCollaborator, RpcError
from .poller import (
    ChainStalledError, ConfirmationPoller, PollAggregateError, PollError,
    PollOutcome, PollStatus, PollTask,
)
from .staking import StakeClient, request_id_of

__all__ = [
    'HttpRpcClient', 'RpcCollaborator', 'RpcError',
    'ChainStalledError', 'ConfirmationPoller', 'PollAggregateError', 'PollError',
    'PollOutcome', 'PollStatus', 'PollTask',
    'StakeClient', 'request_id_of',
]
