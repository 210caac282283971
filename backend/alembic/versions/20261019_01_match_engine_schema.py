"""jobs, candidate profile, match sessions and match logs

Revision ID: 20261019_01_match_engine_schema
Revises:
Create Date: 2026-10-19 00:00:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_01_match_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(bind, name: str) -> bool:
    insp = sa.inspect(bind)
    return insp.has_table(name)


def _has_col(bind, table: str, col: str) -> bool:
    insp = sa.inspect(bind)
    try:
        return any(c["name"] == col for c in insp.get_columns(table))
    except Exception:
        return False


MATCH_COLUMNS = (
    ("match_score", sa.Integer()),
    ("match_reasons", sa.JSON()),
    ("matched_skills", sa.JSON()),
    ("missing_skills", sa.JSON()),
    ("recommendations", sa.JSON()),
)


def upgrade():
    bind = op.get_bind()

    if not _has_table(bind, "jobs"):
        op.create_table(
            "jobs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("company_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            *(sa.Column(name, type_, nullable=True) for name, type_ in MATCH_COLUMNS),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_jobs_company_id", "jobs", ["company_id"])
    else:
        # Jobs may already exist (created by the scraper); only add the match columns
        with op.batch_alter_table("jobs") as batch:
            for name, type_ in MATCH_COLUMNS:
                if not _has_col(bind, "jobs", name):
                    batch.add_column(sa.Column(name, type_, nullable=True))

    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "skills",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("proficiency", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("category", sa.String(100), nullable=True),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "experience",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("company", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "match_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trigger_source", sa.String(32), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="in_progress"),
        sa.Column("jobs_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("jobs_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("jobs_succeeded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("jobs_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_match_sessions_status", "match_sessions", ["status"])
    op.create_index("ix_match_sessions_company_id", "match_sessions", ["company_id"])

    op.create_table(
        "match_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(36), nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("error_type", sa.String(32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("model_used", sa.String(128), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["match_sessions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_match_logs_session_id", "match_logs", ["session_id"])
    op.create_index("ix_match_logs_job_id", "match_logs", ["job_id"])


def downgrade():
    op.drop_index("ix_match_logs_job_id", table_name="match_logs")
    op.drop_index("ix_match_logs_session_id", table_name="match_logs")
    op.drop_table("match_logs")
    op.drop_index("ix_match_sessions_company_id", table_name="match_sessions")
    op.drop_index("ix_match_sessions_status", table_name="match_sessions")
    op.drop_table("match_sessions")
    op.drop_table("experience")
    op.drop_table("skills")
    op.drop_table("profiles")
    # jobs belongs to the scraper as well; only the match columns are ours
    with op.batch_alter_table("jobs") as batch:
        for name, _ in MATCH_COLUMNS:
            batch.drop_column(name)
