"""zipcast: Extract an archive once and deploy it to many SSH hosts in parallel."""

from .config import DeploymentRequest, HostAddress, load_request, parse_host_list
from .errors import (
    AuthError,
    CommandError,
    ConnectError,
    DeployError,
    ExtractionError,
    InstallError,
    MirrorError,
    TransferError,
)
from .executor import Executor, HostState
from .extractor import StagingEntry, StagingTree, extract_archive
from .mirror import MirrorStats, mirror_tree
from .pipeline import HostOutcome, HostPipeline, PipelineState
from .session import CommandResult, RemoteSession

__all__ = [
    "DeploymentRequest",
    "HostAddress",
    "load_request",
    "parse_host_list",
    "AuthError",
    "CommandError",
    "ConnectError",
    "DeployError",
    "ExtractionError",
    "InstallError",
    "MirrorError",
    "TransferError",
    "Executor",
    "HostState",
    "StagingEntry",
    "StagingTree",
    "extract_archive",
    "MirrorStats",
    "mirror_tree",
    "HostOutcome",
    "HostPipeline",
    "PipelineState",
    "CommandResult",
    "RemoteSession",
]
