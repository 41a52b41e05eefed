"""
ZFS command wrapper service.

Executes zpool/zfs/chown commands and parses their tabular output.
Every failure is raised: GatewayError for zpool/zfs, OwnershipError for
chown. Nothing is swallowed into an empty result.
"""

import os
import subprocess
import logging
from typing import List, Optional, Sequence

from nas_agent.config import settings
from nas_agent.errors import GatewayError, OwnershipError
from nas_agent.models.pool import PoolInfo, DatasetInfo
from nas_agent.utils import encode_name

logger = logging.getLogger(__name__)

POOL_FIELDS = "name,size,alloc,free,frag,health"
DATASET_FIELDS = "name,quota,used,avail"


def build_sharenfs_policy(rw_addresses: Sequence[str], ro_addresses: Sequence[str]) -> str:
    """
    Build the complete sharenfs value for a dataset.

    Always allows insecure (>1024) client ports; rw/ro are only emitted
    when their address list is non-empty. Addresses are colon-joined.
    """
    policy = "insecure"
    if rw_addresses:
        policy += f",rw={':'.join(rw_addresses)}"
    if ro_addresses:
        policy += f",ro={':'.join(ro_addresses)}"
    return policy


class ZFSService:
    """Service for executing ZFS commands."""

    def __init__(self):
        self.zfs = settings.zfs_binary
        self.zpool = settings.zpool_binary
        self.timeout = settings.command_timeout_seconds

    def _run_command(self, cmd: List[str], timeout: Optional[int] = None) -> str:
        """Execute a command and return its stdout. Raises GatewayError on any failure."""
        command = " ".join(cmd)
        logger.debug(f"Running command: {command}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {command}")
            raise GatewayError(f"Command timed out: {command}", command=command)
        except OSError as e:
            logger.error(f"Command error: {e}")
            raise GatewayError(f"Failed to run {cmd[0]}: {e}", command=command)

        if result.returncode != 0:
            diagnostic = (result.stderr or result.stdout).strip()
            logger.error(f"Command failed ({result.returncode}): {command}: {diagnostic}")
            raise GatewayError(
                diagnostic or f"{cmd[0]} exited with status {result.returncode}",
                command=command,
                exit_code=result.returncode
            )
        return result.stdout

    # =========================================================================
    # Pool Operations
    # =========================================================================

    def list_pools(self) -> List[PoolInfo]:
        """List all ZFS pools with their properties."""
        stdout = self._run_command([self.zpool, "list", "-H", "-o", POOL_FIELDS])

        pools = []
        for line in stdout.split("\n"):
            fields = line.split()
            if len(fields) < 6:
                continue
            pools.append(PoolInfo(
                name=fields[0],
                size=fields[1],
                allocated=fields[2],
                free=fields[3],
                fragmentation=fields[4],
                health=fields[5]
            ))

        return pools

    # =========================================================================
    # Dataset Operations
    # =========================================================================

    def list_datasets(self) -> List[DatasetInfo]:
        """List all filesystem datasets in zfs list order."""
        stdout = self._run_command([
            self.zfs, "list", "-H",
            "-o", DATASET_FIELDS,
            "-t", "filesystem"
        ])

        datasets = []
        for line in stdout.split("\n"):
            fields = line.split()
            if len(fields) < 2:
                continue
            # Pad short lines so missing trailing columns read as "-"
            fields += ["-"] * (4 - len(fields))
            datasets.append(DatasetInfo(
                id=encode_name(fields[0]),
                name=fields[0],
                quota=fields[1],
                used=fields[2],
                available=fields[3]
            ))

        return datasets

    def create_dataset(self, name: str, quota: Optional[str] = None) -> None:
        """Create a new dataset, optionally with a quota."""
        cmd = [self.zfs, "create"]
        if quota:
            cmd.extend(["-o", f"quota={quota}"])
        cmd.append(name)

        self._run_command(cmd)
        logger.info(f"Dataset {name} created (quota={quota or 'none'})")

    def update_quota(self, name: str, quota: str) -> None:
        """Set the quota of an existing dataset."""
        self._run_command([self.zfs, "set", f"quota={quota}", name])
        logger.info(f"Dataset {name} quota set to {quota}")

    def delete_dataset(self, name: str) -> None:
        """Destroy a dataset. zfs refuses busy or non-empty datasets; that error is raised as-is."""
        self._run_command([self.zfs, "destroy", name])
        logger.info(f"Dataset {name} destroyed")

    # =========================================================================
    # NFS Share Operations
    # =========================================================================

    def publish_share(
        self,
        dataset: str,
        rw_addresses: Sequence[str],
        ro_addresses: Sequence[str]
    ) -> str:
        """
        Replace the dataset's sharenfs policy with the given address lists.

        This always writes the full policy; callers pass the complete
        desired lists, never a delta. Returns the policy that was set.
        """
        policy = build_sharenfs_policy(rw_addresses, ro_addresses)
        logger.info(f"Publishing NFS share {dataset}: sharenfs={policy}")
        self._run_command([self.zfs, "set", f"sharenfs={policy}", dataset])
        return policy

    def unpublish_share(self, dataset: str) -> None:
        """Disable NFS export of a dataset."""
        logger.info(f"Unpublishing NFS share {dataset}")
        self._run_command([self.zfs, "set", "sharenfs=off", dataset])

    def mount_path(self, dataset: str) -> str:
        """Filesystem path a dataset is mounted at."""
        return os.path.join(settings.mount_root, dataset.lstrip("/"))

    def normalize_ownership(self, path: str) -> None:
        """
        Recursively hand a dataset mount path to the neutral share owner.

        NFS clients without a matching local account can then read/write
        as the export policy allows.
        """
        cmd = [settings.chown_binary, "-R", settings.share_owner, path]
        if settings.use_sudo:
            cmd = [settings.sudo_binary, "-n"] + cmd
        try:
            self._run_command(cmd)
        except GatewayError as e:
            raise OwnershipError(path, e.message) from e
        logger.info(f"Ownership of {path} set to {settings.share_owner}")


# Singleton instance
zfs_service = ZFSService()
