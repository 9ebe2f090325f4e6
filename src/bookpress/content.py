"""Content-tree types and the collaborator interfaces that produce them.

Discovering a book's page tree, creating missing front/back matter in the
CMS, and building the alternate course-package format all live outside the
worker. The job service talks to them only through ``ContentSource`` and
``Packager``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

FRONT_MATTER_TITLE = "Front Matter"
BACK_MATTER_TITLE = "Back Matter"
MATTER_TITLES = (FRONT_MATTER_TITLE, BACK_MATTER_TITLE)


class MatterType(str, Enum):
    FRONT = "Front"
    BACK = "Back"


@dataclass(frozen=True)
class BookID:
    """Identifies a book by library and cover page id."""
    lib: str
    page_id: int

    @property
    def key(self) -> str:
        """Job key used for checkpoints and output directories."""
        return f"{self.lib}-{self.page_id}"


class LicenseInfo(BaseModel):
    label: str
    link: str
    raw: str
    version: Optional[str] = None


class PrintInfo(BaseModel):
    """Metadata printed on covers and in PDF properties."""

    title: str = ""
    author_name: str = ""
    company_name: str = ""
    spine_title: str = ""
    attribution_prefix: str = ""
    program_name: str = ""
    program_url: str = ""


class ContentNode(BaseModel):
    """One page of a book's content tree."""

    id: int = Field(..., description="Page id within its library")
    lib: str = Field(..., description="Library (subdomain) the page lives in")
    title: str
    url: str
    tags: List[str] = Field(default_factory=list)
    matter_type: Optional[MatterType] = Field(
        default=None, description="Set on pages inside the Front/Back Matter containers"
    )
    license: Optional[LicenseInfo] = None
    print_info: PrintInfo = Field(default_factory=PrintInfo)
    summary: str = ""
    subpages: List["ContentNode"] = Field(default_factory=list)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True

    @property
    def key(self) -> str:
        return f"{self.lib}-{self.id}"

    @property
    def is_matter_container(self) -> bool:
        """The structural Front/Back Matter page itself (not its children)."""
        return any(t in self.title for t in MATTER_TITLES)

    @property
    def is_main_toc(self) -> bool:
        return "coverpage:yes" in self.tags or "coverpage:nocommons" in self.tags


ContentNode.model_rebuild()


def has_matter(root: ContentNode, matter: MatterType) -> bool:
    """True if the book already has the given matter section as a direct child."""
    title = FRONT_MATTER_TITLE if MatterType(matter) == MatterType.FRONT else BACK_MATTER_TITLE
    return any(child.title == title for child in root.subpages)


# Creative Commons and other licenses recognised in ``license:`` page tags.
_CC_LICENSES = {
    "ccby": ("CC BY", "by"),
    "ccbysa": ("CC BY-SA", "by-sa"),
    "ccbync": ("CC BY-NC", "by-nc"),
    "ccbynd": ("CC BY-ND", "by-nd"),
    "ccbyncsa": ("CC BY-NC-SA", "by-nc-sa"),
    "ccbyncnd": ("CC BY-NC-ND", "by-nc-nd"),
}
_OTHER_LICENSES = {
    "publicdomain": ("Public Domain", "https://en.wikipedia.org/wiki/Public_domain"),
    "gnu": ("GPL", "https://www.gnu.org/licenses/gpl-3.0.en.html"),
    "gnudsl": ("GNU Design Science License", "https://www.gnu.org/licenses/dsl.html"),
    "gnufdl": ("GNU Free Documentation License", "https://www.gnu.org/licenses/fdl-1.3.en.html"),
    "arr": ("© All Rights Reserved", "https://en.wikipedia.org/wiki/All_rights_reserved"),
    "ck12": ("CK-12", "https://www.ck12info.org/curriculum-materials-license"),
}


def get_license(tags: List[str]) -> Optional[LicenseInfo]:
    """Read ``license:<id>`` and ``licenseversion:<NN>`` tags.

    The version tag has no separator ("40" means 4.0); it defaults to 4.0.
    Unknown licenses return None.
    """
    license_id = ""
    version = "4.0"
    for tag in tags or []:
        name, _, value = tag.partition(":")
        if name == "license" and value:
            license_id = value
        elif name == "licenseversion" and len(value) == 2:
            version = f"{value[0]}.{value[1]}"

    if license_id in _CC_LICENSES:
        label, slug = _CC_LICENSES[license_id]
        return LicenseInfo(
            label=f"{label} {version}",
            link=f"https://creativecommons.org/licenses/{slug}/{version}/",
            raw=license_id,
            version=version,
        )
    if license_id in _OTHER_LICENSES:
        label, link = _OTHER_LICENSES[license_id]
        return LicenseInfo(label=label, link=link, raw=license_id)
    return None


class ContentSource(ABC):
    """Reads book structure from the CMS and completes missing matter."""

    @abstractmethod
    def resolve_book_id(self, url: str) -> Optional[BookID]:
        """Map a book URL to its identifier, or None if it cannot be resolved."""
        pass

    @abstractmethod
    def discover(self, book_id: BookID) -> ContentNode:
        """Return the full page tree rooted at the book's cover page."""
        pass

    @abstractmethod
    def create_matter(self, root: ContentNode, matter: MatterType) -> None:
        """Create the default Front or Back Matter section for a book."""
        pass


class Packager(ABC):
    """Builds the alternate (course cartridge) output for a book."""

    @abstractmethod
    def package(self, book_id: BookID, root: ContentNode) -> None:
        pass
