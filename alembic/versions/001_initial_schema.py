"""Initial schema: users, sources, documents, challenges, agent runs, prompts"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("open_id", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("login_method", sa.String(64), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        *_timestamps(),
        sa.Column("last_signed_in", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_name", sa.String(255), nullable=False, unique=True),
        sa.Column("org_type", sa.String(100), nullable=False),
        sa.Column("org_country", sa.String(100), nullable=True),
        sa.Column("org_website", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "sources",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("org_type", sa.String(20), nullable=False),
        sa.Column("trust_level", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("base_url", sa.String(1000), nullable=False, unique=True),
        sa.Column("region_focus", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("crawl_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rate_limit_ms", sa.Integer(), nullable=False, server_default="1500"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "source_endpoints",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("endpoint_url", sa.String(2048), nullable=False, unique=True),
        sa.Column("endpoint_type", sa.String(20), nullable=False),
        sa.Column("parser_hint", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("last_crawled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_source_endpoints_source_id", "source_endpoints", ["source_id"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("sources.id"), nullable=True),
        sa.Column("source_endpoint_id", sa.Integer(), sa.ForeignKey("source_endpoints.id"), nullable=True),
        sa.Column("url", sa.String(2048), nullable=False, unique=True),
        sa.Column("canonical_url", sa.String(2048), nullable=True),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="discovered"),
        sa.Column("content_type", sa.String(255), nullable=True),
        sa.Column("byte_size", sa.Integer(), nullable=True),
        sa.Column("sha256_bytes", sa.String(64), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column("extracted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_documents_source_id", "documents", ["source_id"])
    op.create_index("idx_documents_status", "documents", ["status"])
    op.create_index("idx_documents_sha256_bytes", "documents", ["sha256_bytes"])

    op.create_table(
        "challenge_extraction_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id"), nullable=True),
        sa.Column("model_used", sa.String(100), nullable=False),
        sa.Column("source_org", sa.String(255), nullable=True),
        sa.Column("source_url", sa.String(1000), nullable=True),
        sa.Column("prompt_key", sa.String(200), nullable=True),
        sa.Column("prompt_version", sa.Integer(), nullable=True),
        sa.Column("prompt_sha256", sa.String(64), nullable=True),
        sa.Column("raw_prompt", sa.Text(), nullable=True),
        sa.Column("raw_response", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "challenges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("extraction_run_id", sa.Integer(), sa.ForeignKey("challenge_extraction_runs.id"), nullable=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id"), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("statement", sa.Text(), nullable=False),
        sa.Column("sdg_goals", sa.Text(), nullable=True),
        sa.Column("geography", sa.String(255), nullable=True),
        sa.Column("target_groups", sa.Text(), nullable=True),
        sa.Column("sectors", sa.Text(), nullable=True),
        sa.Column("source_url", sa.String(1000), nullable=True),
        sa.Column("source_org", sa.String(255), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=True),
        sa.Column("extracted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_challenges_user_id", "challenges", ["user_id"])

    op.create_table(
        "tech_discovery_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("model_used", sa.String(100), nullable=False),
        sa.Column("budget_constraint_eur", sa.Integer(), nullable=False, server_default="10000"),
        sa.Column("challenge_summary", sa.Text(), nullable=True),
        sa.Column("core_functions", sa.JSON(), nullable=True),
        sa.Column("underlying_principles", sa.JSON(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("prompt_key", sa.String(200), nullable=True),
        sa.Column("prompt_version", sa.Integer(), nullable=True),
        sa.Column("prompt_sha256", sa.String(64), nullable=True),
        sa.Column("full_response", sa.Text(), nullable=True),
        sa.Column("raw_prompt", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_tech_discovery_runs_challenge_id", "tech_discovery_runs", ["challenge_id"])

    op.create_table(
        "tech_paths",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("tech_discovery_runs.id"), nullable=False),
        sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id"), nullable=False),
        sa.Column("path_name", sa.String(500), nullable=False),
        sa.Column("path_order", sa.Integer(), nullable=False),
        sa.Column("principles_used", sa.JSON(), nullable=True),
        sa.Column("technology_classes", sa.JSON(), nullable=True),
        sa.Column("why_plausible", sa.Text(), nullable=True),
        sa.Column("estimated_cost_band_eur", sa.String(100), nullable=True),
        sa.Column("estimated_max_cost_eur", sa.Integer(), nullable=True),
        sa.Column("within_budget", sa.Boolean(), nullable=True),
        sa.Column("risks_and_unknowns", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_tech_paths_challenge_id", "tech_paths", ["challenge_id"])

    op.create_table(
        "prompt_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(200), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("agent", sa.String(100), nullable=False),
        sa.Column("operation", sa.String(100), nullable=False),
        sa.Column("public_title", sa.String(255), nullable=True),
        sa.Column("public_description", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("source", sa.String(20), nullable=False, server_default="git"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("key", "version", name="uq_prompt_templates_key_version"),
    )


def downgrade():
    op.drop_table("prompt_templates")
    op.drop_index("idx_tech_paths_challenge_id", "tech_paths")
    op.drop_table("tech_paths")
    op.drop_index("idx_tech_discovery_runs_challenge_id", "tech_discovery_runs")
    op.drop_table("tech_discovery_runs")
    op.drop_index("idx_challenges_user_id", "challenges")
    op.drop_table("challenges")
    op.drop_table("challenge_extraction_runs")
    op.drop_index("idx_documents_sha256_bytes", "documents")
    op.drop_index("idx_documents_status", "documents")
    op.drop_index("idx_documents_source_id", "documents")
    op.drop_table("documents")
    op.drop_index("idx_source_endpoints_source_id", "source_endpoints")
    op.drop_table("source_endpoints")
    op.drop_table("sources")
    op.drop_table("organizations")
    op.drop_table("users")
