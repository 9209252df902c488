"""Broadcast UDP clock synchronization (Sync / FollowUp / DelayReq / DelayResp)."""

__version__ = "0.1.0"
