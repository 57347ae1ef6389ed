"""
pipewatch: supervisor for a long-running external pipeline process.

It watches the status record the pipeline writes, restarts it on failure,
backs off on token exhaustion, catches stalls and runs feature queues.
"""

__version__ = "1.0.0"
