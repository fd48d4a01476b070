"""
Project resolution.

A project is a workspace folder that contains a pglt configuration file.
Only single-root workspaces are supported for now.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pglt_supervisor._core.probe import file_exists
from pglt_supervisor.config import get_config, is_enabled_for_folder
from pglt_supervisor.host import Host
from pglt_supervisor.types import OperatingMode, Project, WorkspaceFolder

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "pglt.toml"
MULTI_ROOT_MESSAGE = "pglt does not support Multi-Root workspace mode for now."


def get_config_path(host: Host, folder: WorkspaceFolder) -> Path:
    """The worker config file for a folder: `pglt.configFile`, or pglt.toml."""
    user_config = get_config(host.configuration, "configFile", folder.path)
    if user_config:
        logger.info(f"User has specified path to config file: {user_config}")
        return folder.path / user_config

    logger.info("User did not specify path to config file. Using default.")
    return folder.path / DEFAULT_CONFIG_FILE


def get_project_for_folder(host: Host, folder: WorkspaceFolder) -> Optional[Project]:
    """
    Resolve the project rooted at a single workspace folder.

    Returns:
        Project, or None when pglt is disabled for the folder or the folder
        has no config file
    """
    if not is_enabled_for_folder(host.configuration, folder.path):
        logger.info(f"pglt is disabled for {folder.path}")
        return None

    config_path = get_config_path(host, folder)
    if not file_exists(config_path):
        logger.info(f"Config file does not exist: {config_path}")
        return None

    logger.info(f"Found config file: {config_path}")
    return Project(root_path=folder.path, config_path=config_path, folder=folder)


async def get_active_project(host: Host) -> Optional[Project]:
    """
    Resolve the project for the host's open folders.

    Multi-root workspaces are reported to the user and yield no project.
    """
    mode = host.operating_mode

    if mode is OperatingMode.SINGLE_FILE:
        logger.warning("No workspace folders. Single-file Mode?")
        return None

    if mode is OperatingMode.MULTI_ROOT:
        await host.window.show_error_message(MULTI_ROOT_MESSAGE)
        return None

    return get_project_for_folder(host, host.folders[0])
