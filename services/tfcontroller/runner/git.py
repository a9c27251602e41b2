"""Repository checkout for image builds.

The build pod mounts the checkout through a hostPath volume, so the
directory lives under the configured repo root on the controller's node.
"""

import asyncio
import os
import shutil

from tfcontroller.errors import GitCheckoutError
from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)


def _ssh_command(ssh_key_path: str) -> str:
    return (
        f"ssh -i {ssh_key_path} -o IdentitiesOnly=yes "
        "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"
    )


async def checkout_repo(url: str, branch: str, dest: str, ssh_key_path: str = "") -> str:
    """Shallow-clone `url` at `branch` into `dest`, replacing any previous checkout.

    Returns `dest`.
    """
    if not url:
        raise GitCheckoutError("git repository url is missing")

    if os.path.exists(dest):
        try:
            await asyncio.to_thread(shutil.rmtree, dest)
        except OSError as e:
            raise GitCheckoutError(f"removing previous checkout {dest}: {e}") from e

    args = ["git", "clone", "--depth", "1"]
    if branch:
        args += ["--branch", branch]
    args += [url, dest]

    env = dict(os.environ)
    if ssh_key_path:
        env["GIT_SSH_COMMAND"] = _ssh_command(ssh_key_path)

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
    except OSError as e:
        raise GitCheckoutError(f"running git clone {url}: {e}") from e

    if proc.returncode != 0:
        raise GitCheckoutError(
            f"git clone {url} failed ({proc.returncode}): {stderr.decode(errors='replace').strip()}"
        )

    logger.info("Checked out repository", url=url, branch=branch or "(default)", dest=dest)
    return dest
