"""
Dataset inventory.

Correlates zfs list output with stored NFS share records to tell which
datasets are shared.
"""

import logging
from typing import List, Optional

from nas_agent.db.repository import ShareRepository
from nas_agent.errors import NotFoundError
from nas_agent.models.pool import DatasetInfo
from nas_agent.services.zfs import ZFSService

logger = logging.getLogger(__name__)


class DatasetInventory:
    """Looks up datasets and marks the ones that have a share record."""

    def __init__(self, zfs: ZFSService, shares: ShareRepository):
        self.zfs = zfs
        self.shares = shares

    def find_dataset(self, name: str) -> Optional[DatasetInfo]:
        """
        Find a dataset by exact name.

        Returns None when no dataset has that name. A GatewayError from
        listing is raised, so "absent" and "lookup failed" stay distinct.
        """
        share = self.shares.get_by_dataset(name)

        for dataset in self.zfs.list_datasets():
            if dataset.name == name:
                dataset.share_enabled = share is not None
                return dataset
        return None

    def require_dataset(self, name: str) -> DatasetInfo:
        dataset = self.find_dataset(name)
        if dataset is None:
            raise NotFoundError(f"Dataset '{name}' not found")
        return dataset

    def list_datasets(self, pool: str) -> List[DatasetInfo]:
        """Datasets beneath a pool (the pool root itself excluded), in zfs list order."""
        shared = {share.dataset: share for share in self.shares.list_by_pool(pool)}
        prefix = f"{pool}/"

        datasets = []
        for dataset in self.zfs.list_datasets():
            if not dataset.name.startswith(prefix):
                continue
            dataset.share_enabled = dataset.name in shared
            datasets.append(dataset)

        logger.debug(f"{len(datasets)} dataset(s) in pool {pool}, {len(shared)} shared")
        return datasets
