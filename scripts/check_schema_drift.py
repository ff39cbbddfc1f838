"""Compare the live database schema with the parkdraw models.

Exit status: 0 when they match, 1 on differences, 2 when the check fails.
"""

from __future__ import annotations

import sys

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext
from sqlalchemy.exc import SQLAlchemyError

from parkdraw.db.engine import make_engine
from parkdraw.models import Base


def _print_ops(ops, depth: int = 0) -> None:
    for op in ops:
        print(f"{'  ' * depth}- {op}")
        nested = getattr(op, "ops", None)
        if nested:
            _print_ops(nested, depth + 1)


def main() -> int:
    engine = make_engine()
    shown_url = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except SQLAlchemyError as exc:
        print(f"Schema drift check: ERROR for {shown_url}: {exc}", file=sys.stderr)
        return 2

    if upgrade_ops is None:
        print(f"Schema drift check: ERROR for {shown_url}: no upgrade operations produced.")
        return 2
    if upgrade_ops.is_empty():
        print(f"Schema drift check: OK for {shown_url}.")
        return 0
    print(f"Schema drift check: FAILED for {shown_url}; run a new migration for:")
    _print_ops(upgrade_ops.ops or [])
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
