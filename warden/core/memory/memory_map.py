from __future__ import annotations

# Static layout of the reserved prefix. Changing any of these after a store
# has been written makes existing stores unreadable.
RESERVED_PREFIX_PAGES = 64

LAYOUT_HEADER_PAGE_START = 0
LAYOUT_HEADER_PAGE_END = LAYOUT_HEADER_PAGE_START + 1
GLOBAL_FLAGS_PAGE_START = LAYOUT_HEADER_PAGE_END
GLOBAL_FLAGS_PAGE_END = GLOBAL_FLAGS_PAGE_START + 1
LIFECYCLE_PAGE_START = GLOBAL_FLAGS_PAGE_END
LIFECYCLE_PAGE_END = LIFECYCLE_PAGE_START + 1
ACCESS_CONTROL_PAGE_START = LIFECYCLE_PAGE_END
ACCESS_CONTROL_PAGE_END = ACCESS_CONTROL_PAGE_START + 4

# User structures live in [USER_PAGE_START, user_page_end).
USER_PAGE_START = RESERVED_PREFIX_PAGES

# Dynamic region ids: user-assignable and framework-reserved ranges are disjoint.
USER_REGION_IDS = range(0, 224)
FRAMEWORK_REGION_IDS = range(224, 256)

UPGRADE_BUFFER_REGION_ID = 228
ACCESS_ROLES_REGION_ID = 229

ACCESS_ROLES_REGION_PAGES = 4
