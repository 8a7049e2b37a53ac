# SPDX-License-Identifier: LGPL-2.1-or-later

from typing import Optional


class XnuBuildError(Exception):
    """Base class for all fatal errors raised while provisioning or building."""


class ManifestUnavailable(XnuBuildError):
    pass


class ComponentNotFound(XnuBuildError):
    def __init__(self, component: str, url: str) -> None:
        super().__init__(f"Component {component} not found in release manifest {url}")
        self.component = component
        self.url = url


class WorkspaceCorruption(XnuBuildError):
    pass


class ToolkitFetchFailed(XnuBuildError):
    pass


class ToolkitInstallFailed(XnuBuildError):
    pass


class StageFailed(XnuBuildError):
    def __init__(self, stage: str, status: Optional[int]) -> None:
        super().__init__(f"Stage {stage} failed with exit status {status}")
        self.stage = stage
        self.status = status


class MissingPrecondition(XnuBuildError):
    pass


class InvalidReleaseIdentifier(XnuBuildError):
    pass


class CorruptPatch(XnuBuildError):
    pass
