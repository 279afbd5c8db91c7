"""Normalize localized sleep stage labels and purge zero-valued sleep sessions

Revision ID: 20261019_normalize_sleep_stages
Revises: 20261019_initial_schema
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from healthlake.sleep_stages import is_canonical, normalize_stage


# revision identifiers, used by Alembic.
revision: str = "20261019_normalize_sleep_stages"
down_revision: Union[str, None] = "20261019_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    labels = bind.execute(sa.text("SELECT DISTINCT stage FROM sleep_stages")).scalars().all()
    for label in labels:
        if is_canonical(label):
            continue
        canonical, known = normalize_stage(label)
        if not known:
            continue
        # Drop segments already present under the canonical label
        bind.execute(
            sa.text(
                "DELETE FROM sleep_stages s WHERE s.stage = :old AND EXISTS ("
                " SELECT 1 FROM sleep_stages c"
                " WHERE c.start_time = s.start_time AND c.end_time = s.end_time"
                " AND c.user_id = s.user_id AND c.stage = :new)"
            ),
            {"old": label, "new": canonical},
        )
        bind.execute(
            sa.text("UPDATE sleep_stages SET stage = :new WHERE stage = :old"),
            {"old": label, "new": canonical},
        )

    op.execute(
        """
        DELETE FROM health_metrics m
        USING sleep_sessions s
        WHERE m.user_id = s.user_id
          AND m.metric_name = 'sleep_analysis'
          AND m.time = s.sleep_end
          AND s.total_sleep = 0 AND s.deep = 0 AND s.core = 0 AND s.rem = 0
        """
    )
    op.execute(
        "DELETE FROM sleep_sessions"
        " WHERE total_sleep = 0 AND deep = 0 AND core = 0 AND rem = 0"
    )


def downgrade() -> None:
    # Data-only migration; the original labels and sessions are not restorable.
    pass
