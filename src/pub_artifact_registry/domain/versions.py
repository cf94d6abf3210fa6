import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

from pub_artifact_registry.domain.models.exceptions import PackageNotFoundError
from pub_artifact_registry.domain.models.models import Package, PackageVersion

logger = logging.getLogger(__name__)


def version_components(version: str) -> Tuple[int, int, int]:
    """major, minor and patch of a version label; anything non-numeric counts as 0.

    "1.2.3-beta.1" gives (1, 2, 0). Pre-release and build suffixes are not
    ordered beyond that.
    """
    parts = []
    for part in version.split(".")[:3]:
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def is_newer_version(candidate: str, current: str) -> bool:
    return version_components(candidate) > version_components(current)


def select_latest(versions: Sequence[PackageVersion]) -> Optional[PackageVersion]:
    """Highest version by major.minor.patch; on a tie the first one seen stays"""
    latest = None
    for version in versions:
        if latest is None or is_newer_version(version.version, latest.version):
            latest = version
    return latest


def aggregate_package(
    package_name: str,
    version_labels: Sequence[str],
    load_version: Callable[[str], PackageVersion],
    max_workers: int = 1,
) -> Package:
    """Build the package listing from the version labels known to the registry.

    Every label is loaded through ``load_version``. A version that fails to
    load is logged and left out so that one broken archive does not hide the
    rest of the package.
    """
    if not version_labels:
        raise PackageNotFoundError(f"Package {package_name} not found")

    def _load(label: str) -> Optional[PackageVersion]:
        try:
            return load_version(label)
        except Exception as e:
            logger.warning(
                "Failed to process version %s of %s: %s", label, package_name, e
            )
            return None

    if max_workers > 1 and len(version_labels) > 1:
        with ThreadPoolExecutor(
            max_workers=min(max_workers, len(version_labels)),
            thread_name_prefix="pub-listing",
        ) as executor:
            loaded = list(executor.map(_load, version_labels))
    else:
        loaded = [_load(label) for label in version_labels]

    versions: List[PackageVersion] = [version for version in loaded if version is not None]
    if not versions:
        logger.info("No readable versions for package %s", package_name)
        raise PackageNotFoundError(f"Package {package_name} not found")

    return Package(name=package_name, versions=versions, latest=select_latest(versions))
