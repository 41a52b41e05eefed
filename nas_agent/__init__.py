"""
NAS Agent - FastAPI service for ZFS-backed NFS appliances.

Provides REST API for:
- Pool/dataset inventory
- Dataset lifecycle
- NFS share management with per-user permissions
- Dataset file browsing, upload and delete
"""

__version__ = "1.0.0"
__author__ = "EasyNAS"
