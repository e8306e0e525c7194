"""Static checks that the Alembic environment and migration match the models."""

import ast
from pathlib import Path

from rallyelo.db.models import Base

ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"


def _calls(path: Path, attribute: str) -> list[ast.Call]:
    tree = ast.parse(path.read_text())
    return [
        node for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == attribute
    ]


def test_online_autogenerate_includes_schemas():
    configure_calls = _calls(ALEMBIC_DIR / "env.py", "configure")
    online = [c for c in configure_calls if any(k.arg == "connection" for k in c.keywords)]

    assert len(online) == 1
    keywords = {k.arg: k.value for k in online[0].keywords}
    assert isinstance(keywords.get("include_schemas"), ast.Constant)
    assert keywords["include_schemas"].value is True


def test_migration_creates_every_model_table():
    created = set()
    for migration in (ALEMBIC_DIR / "versions").glob("*.py"):
        for call in _calls(migration, "create_table"):
            created.add(call.args[0].value)

    assert created == set(Base.metadata.tables)
