"""
Respawn: workstation session continuity.

Periodically snapshots which monitored applications are running, persists
the snapshot as a checkpoint, and replays it after a restart, crash, or
sleep cycle.
"""

__version__ = "1.0.0"
