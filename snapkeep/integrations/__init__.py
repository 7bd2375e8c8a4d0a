# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integrations - FastAPI plugin and systemd unit rendering.
"""

from snapkeep.integrations.fastapi import (
    setup_snapkeep_plugin,
    snapkeep_lifespan,
    register_snapkeep_routes,
    verify_api_key,
)

from snapkeep.integrations.systemd import (
    render_units,
    write_units,
)

__all__ = [
    "setup_snapkeep_plugin",
    "snapkeep_lifespan",
    "register_snapkeep_routes",
    "verify_api_key",
    "render_units",
    "write_units",
]
