# portal_core/path_policy.py
"""
Path Policy.

Pure mapping from (entity type, file role, entity id) to a storage bucket and an
object path, plus the per-asset-class validation limits. Nothing here touches
the network.

Path conventions:
    permanent:  {entity_id}/{role_prefix}-{unix_millis}-{random_token}.{ext}
    temporary:  temp/{session_id}/{role_prefix}-{unix_millis}-{random_token}.{ext}
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple
import logging

from portal_core.models import FileType, IncomingFile, ValidationResult
from portal_core.utils import random_token, unix_millis

logger = logging.getLogger("Portal_Core").getChild("PathPolicy")

TEMP_PREFIX = "temp"
DEFAULT_EXTENSION = "jpg"

# --- Buckets (provisioned out-of-band) ---

ARTICLE_IMAGES = "article-images" # shared by articles and briefs, separated by entity id prefix
AUTHOR_AVATARS = "author-avatars"
AUTHOR_BANNERS = "author-banners"
FEATURED_IMAGES = "featured-images"
COMPANY_LOGOS = "company-logos"
BULL_ROOM_FILES = "bull-room-files"

STORAGE_BUCKETS: Tuple[str, ...] = (
    ARTICLE_IMAGES, AUTHOR_AVATARS, AUTHOR_BANNERS, FEATURED_IMAGES, COMPANY_LOGOS, BULL_ROOM_FILES,
)

# --- Asset Classes ---

MB = 1024 * 1024
IMAGE_MIME_TYPES: FrozenSet[str] = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})


@dataclass(frozen=True)
class AssetClass:
    """Validation limits for one kind of image. Dimensions are advisory only."""
    name: str
    max_bytes: int
    allowed_types: FrozenSet[str] = IMAGE_MIME_TYPES
    max_width: Optional[int] = None
    max_height: Optional[int] = None

    def describe(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "max_bytes": self.max_bytes,
            "allowed_types": sorted(self.allowed_types),
            "max_width": self.max_width,
            "max_height": self.max_height,
        }


AUTHOR_AVATAR = AssetClass("AUTHOR_AVATAR", 2 * MB, max_width=400, max_height=400)
AUTHOR_BANNER = AssetClass("AUTHOR_BANNER", 10 * MB, max_width=1500, max_height=500)
FEATURED_IMAGE = AssetClass("FEATURED_IMAGE", 10 * MB, max_width=1920, max_height=1080)
ARTICLE_IMAGE = AssetClass("ARTICLE_IMAGE", 5 * MB, max_width=1920, max_height=1080)
BRIEF_IMAGE = AssetClass("BRIEF_IMAGE", 10 * MB, max_width=1920, max_height=1080)
COMPANY_LOGO = AssetClass("COMPANY_LOGO", 2 * MB, max_width=400, max_height=400)
BULL_ROOM_FILE = AssetClass("BULL_ROOM_FILE", 10 * MB, allowed_types=IMAGE_MIME_TYPES | {"image/gif"})

ASSET_CLASSES: Dict[str, AssetClass] = {
    a.name: a for a in (
        AUTHOR_AVATAR, AUTHOR_BANNER, FEATURED_IMAGE, ARTICLE_IMAGE, BRIEF_IMAGE, COMPANY_LOGO, BULL_ROOM_FILE,
    )
}

# --- Entity Upload Rules ---

@dataclass(frozen=True)
class UploadRule:
    """Where a file of a given role for a given entity type goes, and how it is checked."""
    bucket: str
    asset_class: AssetClass
    prefix: str


@dataclass(frozen=True)
class EntityUploadConfig:
    entity_type: str
    rules: Dict[FileType, UploadRule] = field(default_factory=dict)

    @property
    def buckets(self) -> List[str]:
        # Ordered and de-duplicated; briefs use article-images and featured-images
        seen: List[str] = []
        for rule in self.rules.values():
            if rule.bucket not in seen:
                seen.append(rule.bucket)
        return seen


ENTITY_UPLOAD_CONFIGS: Dict[str, EntityUploadConfig] = {
    "article": EntityUploadConfig("article", {
        FileType.PRIMARY: UploadRule(FEATURED_IMAGES, FEATURED_IMAGE, "featured"),
        FileType.SECONDARY: UploadRule(ARTICLE_IMAGES, ARTICLE_IMAGE, "article"),
    }),
    "author": EntityUploadConfig("author", {
        FileType.PRIMARY: UploadRule(AUTHOR_AVATARS, AUTHOR_AVATAR, "avatar"),
        FileType.SECONDARY: UploadRule(AUTHOR_BANNERS, AUTHOR_BANNER, "banner"),
    }),
    "brief": EntityUploadConfig("brief", {
        FileType.PRIMARY: UploadRule(ARTICLE_IMAGES, BRIEF_IMAGE, "brief"),
        FileType.SECONDARY: UploadRule(FEATURED_IMAGES, FEATURED_IMAGE, "featured"),
    }),
    "company": EntityUploadConfig("company", {
        FileType.PRIMARY: UploadRule(COMPANY_LOGOS, COMPANY_LOGO, "logo"),
    }),
    "bull_room": EntityUploadConfig("bull_room", {
        FileType.PRIMARY: UploadRule(BULL_ROOM_FILES, BULL_ROOM_FILE, "file"),
    }),
}


def is_known_entity_type(entity_type: str) -> bool:
    return entity_type in ENTITY_UPLOAD_CONFIGS


def get_entity_config(entity_type: str) -> EntityUploadConfig:
    config = ENTITY_UPLOAD_CONFIGS.get(entity_type)
    if config is None:
        logger.error(f"Invalid entity type: {entity_type}")
        raise ValueError(f"Unknown entity type '{entity_type}'. Expected one of: {', '.join(ENTITY_UPLOAD_CONFIGS)}")
    return config


def resolve_rule(entity_type: str, file_type: FileType) -> UploadRule:
    config = get_entity_config(entity_type)
    rule = config.rules.get(FileType(file_type))
    if rule is None:
        logger.error(f"Entity type '{entity_type}' has no '{FileType(file_type).value}' upload slot.")
        raise ValueError(f"Entity type '{entity_type}' does not accept '{FileType(file_type).value}' files")
    return rule


def entity_buckets(entity_type: str) -> List[str]:
    """Every bucket an entity of this type may own objects in."""
    return get_entity_config(entity_type).buckets


def get_asset_class(name: str) -> AssetClass:
    try:
        return ASSET_CLASSES[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown asset class '{name}'")

# --- Validation ---

def _format_megabytes(num_bytes: int) -> str:
    value = num_bytes / MB
    return f"{value:g}"


def validate(file: IncomingFile, asset_class: AssetClass) -> ValidationResult:
    """Checks byte size, then MIME type. Never raises."""
    if file.size > asset_class.max_bytes:
        return ValidationResult(
            is_valid=False,
            error=f"File size must be less than {_format_megabytes(asset_class.max_bytes)}MB",
        )

    if file.content_type not in asset_class.allowed_types:
        return ValidationResult(
            is_valid=False,
            error=f"File type must be one of: {', '.join(sorted(asset_class.allowed_types))}",
        )

    return ValidationResult(is_valid=True)

# --- Paths ---

def _check_segment(value: str, what: str) -> None:
    if not value or "/" in value or "\\" in value or value in (".", ".."):
        raise ValueError(f"Invalid {what}: '{value}'")


def file_extension(original_name: str) -> str:
    name = original_name.rsplit("/", 1)[-1]
    if "." not in name:
        return DEFAULT_EXTENSION
    ext = name.rsplit(".", 1)[-1].lower()
    return ext or DEFAULT_EXTENSION


def generate_file_name(original_name: str, prefix: str = "upload") -> str:
    """Collision-resistant object name: {prefix}-{unix_millis}-{random_token}.{ext}"""
    return f"{prefix}-{unix_millis()}-{random_token()}.{file_extension(original_name)}"


def entity_prefix(entity_id: str) -> str:
    """Folder owning every object of one entity within a bucket."""
    _check_segment(entity_id, "entity id")
    if entity_id == TEMP_PREFIX:
        raise ValueError(f"Entity id '{TEMP_PREFIX}' collides with the temporary namespace")
    return entity_id


def build_path(entity_type: str, entity_id: str, file_type: FileType, original_name: str) -> Tuple[str, str]:
    """Returns (bucket, object path) for a permanent entity upload."""
    rule = resolve_rule(entity_type, file_type)
    path = f"{entity_prefix(entity_id)}/{generate_file_name(original_name, rule.prefix)}"
    return rule.bucket, path


def session_prefix(session_id: str) -> str:
    _check_segment(session_id, "session id")
    return f"{TEMP_PREFIX}/{session_id}"


def build_temp_path(session_id: str, original_name: str, prefix: str = "upload") -> str:
    return f"{session_prefix(session_id)}/{generate_file_name(original_name, prefix)}"


def is_temp_path(path: str) -> bool:
    return path.startswith(f"{TEMP_PREFIX}/")


def permanent_path_from_temp(temp_path: str, entity_id: str, default_name: str = "image.jpg") -> str:
    """temp/{session_id}/{name} -> {entity_id}/{name}"""
    if not is_temp_path(temp_path):
        raise ValueError(f"Not a temporary path: '{temp_path}'")
    file_name = temp_path.split("/")[-1] or default_name
    return f"{entity_prefix(entity_id)}/{file_name}"
