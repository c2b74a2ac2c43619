#!/usr/bin/env python3
"""Generate JSON schemas for the scopestore context models."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scopestore.models import export_json_schemas  # noqa: E402

if __name__ == "__main__":
    export_json_schemas(Path("docs/schemas"))
    print("Schema generation complete!")
