"""Page restrictions and generated city landing pages."""

from .restrictions import (
    AccessResult,
    AccessUser,
    check_access_with_restriction,
    check_page_access,
    match_route_pattern,
)
from .seo_generator import (
    CampaignGenerationResult,
    generate_city_pages,
    make_page_slug,
)

__all__ = [
    "AccessResult",
    "AccessUser",
    "check_access_with_restriction",
    "check_page_access",
    "match_route_pattern",
    "CampaignGenerationResult",
    "generate_city_pages",
    "make_page_slug",
]
