"""
Worker pool for concurrent transaction broadcast.
"""

from .task_queue import TaskQueue, QueueStats
from .endpoint_pool import EndpointPool, RPCEndpoint, DEFAULT_RPC_URLS
from .connection import Connection, ConnectionFactory
from .worker import Worker, WorkerState
from .dispatcher import Dispatcher

__all__ = [
    "TaskQueue",
    "QueueStats",
    "EndpointPool",
    "RPCEndpoint",
    "DEFAULT_RPC_URLS",
    "Connection",
    "ConnectionFactory",
    "Worker",
    "WorkerState",
    "Dispatcher",
]
