"""Export the API's Pydantic model JSON schemas for the dashboard frontend.

Usage:
    cd backend && python scripts/export_schemas.py [output_path]

Default output: ../frontend/src/schemas/api-contracts.json
"""

import inspect
import json
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from pydantic import BaseModel  # noqa: E402

from pmarchive.models import archive, entities, responses  # noqa: E402

MODULES = (archive, entities, responses)


def discover_models(module):
    """Return {ClassName: cls} for the public BaseModel subclasses defined in a module."""
    return {
        name: obj
        for name, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, BaseModel)
        and obj.__module__ == module.__name__
        and not name.startswith("_")
    }


def build_schemas() -> dict:
    schemas = {}
    for module in MODULES:
        for name, cls in discover_models(module).items():
            schemas[name] = cls.model_json_schema(by_alias=True)
    return dict(sorted(schemas.items()))


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if argv:
        output_path = Path(argv[0])
    else:
        output_path = backend_dir.parent / "frontend" / "src" / "schemas" / "api-contracts.json"
    output_path.parent.mkdir(parents=True, exist_ok=True)

    schemas = build_schemas()
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(schemas, f, indent=2, sort_keys=True)
        f.write("\n")

    print(f"Exported {len(schemas)} schemas to {output_path}")
    for name in schemas:
        print(f"  {name}")


if __name__ == "__main__":
    main()
