"""
Table ordering shared by snapshot, restore and wipe
"""

# Parent-to-child: the order rows are inserted during a restore
SNAPSHOT_TABLES = (
    "categories",
    "locations",
    "tags",
    "parts",
    "part_tags",
    "storage_logs",
)

# Child-to-parent: links and logs first, then parts, master tables last
DELETE_ORDER = tuple(reversed(SNAPSHOT_TABLES))

# Partial reset: transactional tables only, child-to-parent
WIPE_ORDER = ("storage_logs", "part_tags", "parts")

# Manifest keys written by older exports
TABLE_ALIASES = {
    "part_tags": ("partTags",),
}

# Read-only, join-derived fields that exports attach to rows
TAGS_LIST_FIELD = "tags_list"
DERIVED_FIELDS = frozenset({TAGS_LIST_FIELD, "category_name", "location_name"})
