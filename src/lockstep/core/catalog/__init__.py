"""Version catalogs: the pinned package set of each platform revision."""

from lockstep.core.catalog.log import CatalogLog
from lockstep.core.catalog.models import VersionCatalog

__all__ = ["CatalogLog", "VersionCatalog"]
