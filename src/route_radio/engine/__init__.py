"""Playback engine - audio synchronization and the coordinator.

Contains:
- AudioSyncEngine: gapless two-slot playback with two-tier drift correction
- RadioCoordinator: wires clock, mapper, audio and media together
"""

from .audio_sync import AudioSyncEngine, SyncAction, SlotState
from .coordinator import RadioCoordinator, SessionState

__all__ = ['AudioSyncEngine', 'SyncAction', 'SlotState', 'RadioCoordinator', 'SessionState']
