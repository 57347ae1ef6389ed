"""
The Supervisor package.
Watches the pipeline's status record and keeps the pipeline going.

This package contains the reconciliation loop (`Supervisor`) and its helper
modules: status classification, restart/backoff policy, process management,
notifications and the sequential feature queue.
"""
from .classifier import Action, classify
from .controller import RestartController, RestartScheduler
from .process_utils import ProcessManager
from .notifier import NotificationDispatcher, TelegramNotifier
from .queue_runner import QueueRunner
from .supervisor import Supervisor

__all__ = [
    'Action', 'classify', 'RestartController', 'RestartScheduler', 'ProcessManager',
    'NotificationDispatcher', 'TelegramNotifier', 'QueueRunner', 'Supervisor',
]
