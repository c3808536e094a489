"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

UUID_TYPE = sa.Uuid(as_uuid=True)
WEIGHT_TYPE = sa.Numeric(9, 6)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            # ORM-managed updated_at (no database trigger).
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "entity_mentions",
        sa.Column("mention_id", UUID_TYPE, primary_key=True),
        sa.Column("entity_name", sa.String(length=255), nullable=False),
        sa.Column("entity_key", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.String(length=255), nullable=False),
        sa.Column("mentioned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sentiment", sa.Float()),
        sa.Column("source_title", sa.String(length=500)),
        sa.Column("source_url", sa.String(length=1000)),
        *_timestamps(),
        sa.UniqueConstraint("entity_key", "source_id", "source_type", name="uq_entity_mentions_source"),
    )
    op.create_index("ix_entity_mentions_mentioned_at", "entity_mentions", ["mentioned_at"])
    op.create_index(
        "ix_entity_mentions_entity_key", "entity_mentions", ["entity_key", "entity_type", "mentioned_at"]
    )

    op.create_table(
        "entity_trends",
        sa.Column("trend_id", UUID_TYPE, primary_key=True),
        sa.Column("entity_key", sa.String(length=255), nullable=False),
        sa.Column("entity_name", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("mentions_1h", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mentions_6h", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mentions_24h", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mentions_7d", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("velocity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("momentum", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_trending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sentiment_avg", sa.Float()),
        sa.Column("sentiment_change", sa.Float()),
        sa.Column("first_seen_at", sa.DateTime(timezone=True)),
        sa.Column("last_seen_at", sa.DateTime(timezone=True)),
        sa.Column("values_changed_at", sa.DateTime(timezone=True)),
        sa.Column("calculated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("entity_key", "entity_type", name="uq_entity_trends_entity"),
    )
    op.create_index("ix_entity_trends_trending", "entity_trends", ["is_trending", "velocity"])
    op.create_index("ix_entity_trends_calculated_at", "entity_trends", ["calculated_at"])

    op.create_table(
        "entity_trend_snapshots",
        sa.Column("snapshot_id", UUID_TYPE, primary_key=True),
        sa.Column("entity_key", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("bucket_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("velocity", sa.Float(), nullable=False),
        sa.Column("mentions_1h", sa.Integer(), nullable=False),
        sa.Column("mentions_6h", sa.Integer(), nullable=False),
        sa.Column("mentions_24h", sa.Integer(), nullable=False),
        sa.Column("sentiment_avg", sa.Float()),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("entity_key", "entity_type", "bucket_start", name="uq_entity_trend_snapshots_bucket"),
    )
    op.create_index("ix_entity_trend_snapshots_entity", "entity_trend_snapshots", ["entity_key", "entity_type"])

    op.create_table(
        "entity_anomalies",
        sa.Column("anomaly_id", UUID_TYPE, primary_key=True),
        sa.Column("entity_key", sa.String(length=255), nullable=False),
        sa.Column("entity_name", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("anomaly_type", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("z_score", sa.Float()),
        sa.Column("current_value", sa.Float(), nullable=False),
        sa.Column("baseline_value", sa.Float(), nullable=False),
        sa.Column("baseline_stddev", sa.Float(), nullable=False),
        sa.Column("baseline_points", sa.Integer(), nullable=False),
        sa.Column("is_surfaced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("detected_day", sa.Date(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "entity_key", "entity_type", "anomaly_type", "detected_day", name="uq_entity_anomalies_day"
        ),
    )
    op.create_index("ix_entity_anomalies_surfaced", "entity_anomalies", ["is_surfaced", "detected_at"])

    op.create_table(
        "organizations",
        sa.Column("org_id", UUID_TYPE, primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("focus_topics", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "watchlist_entries",
        sa.Column("entry_id", UUID_TYPE, primary_key=True),
        sa.Column(
            "org_id",
            UUID_TYPE,
            sa.ForeignKey("organizations.org_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("entity_name", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32)),
        sa.Column("aliases", sa.JSON(), nullable=False),
        sa.Column("alert_threshold", sa.Float(), nullable=False, server_default="50"),
        sa.Column("sentiment_alert", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_evaluated_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_watchlist_entries_org_active", "watchlist_entries", ["org_id", "is_active"])
    op.create_index("ix_watchlist_entries_last_evaluated", "watchlist_entries", ["last_evaluated_at"])

    op.create_table(
        "entity_alerts",
        sa.Column("alert_id", UUID_TYPE, primary_key=True),
        sa.Column(
            "org_id",
            UUID_TYPE,
            sa.ForeignKey("organizations.org_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "watchlist_entry_id",
            UUID_TYPE,
            sa.ForeignKey("watchlist_entries.entry_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("entity_name", sa.String(length=255), nullable=False),
        sa.Column("entity_key", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("matched_entity", sa.String(length=255), nullable=False),
        sa.Column("match_type", sa.String(length=16), nullable=False),
        sa.Column("match_score", sa.Float(), nullable=False),
        sa.Column("alert_type", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("actionable_score", sa.Float(), nullable=False),
        sa.Column("score_breakdown", sa.JSON(), nullable=False),
        sa.Column("velocity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_mentions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sample_sources", sa.JSON(), nullable=False),
        sa.Column("suggested_action", sa.String(length=500)),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="unread"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True)),
        sa.Column("alert_day", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("org_id", "entity_key", "alert_day", name="uq_entity_alerts_org_entity_day"),
    )
    op.create_index("ix_entity_alerts_org_status", "entity_alerts", ["org_id", "status", "created_at"])

    op.create_table(
        "donations",
        sa.Column("transaction_id", sa.String(length=64), primary_key=True),
        sa.Column("org_id", UUID_TYPE),
        sa.Column("donor_identity", sa.String(length=255)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("donated_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_donations_donated_at", "donations", ["donated_at"])
    op.create_index("ix_donations_donor_identity", "donations", ["donor_identity"])

    op.create_table(
        "attribution_touchpoints",
        sa.Column("touchpoint_id", UUID_TYPE, primary_key=True),
        sa.Column("donor_identity", sa.String(length=255)),
        sa.Column("touchpoint_type", sa.String(length=32), nullable=False),
        sa.Column("campaign_id", sa.String(length=128)),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolution_key_type", sa.String(length=16)),
        sa.Column("link_confidence", sa.String(length=16), nullable=False, server_default="probabilistic"),
        sa.Column("external_id", sa.String(length=255)),
        sa.Column("utm_source", sa.String(length=255)),
        sa.Column("utm_medium", sa.String(length=255)),
        sa.Column("utm_campaign", sa.String(length=255)),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("touchpoint_type", "external_id", name="uq_attribution_touchpoints_external"),
    )
    op.create_index(
        "ix_attribution_touchpoints_identity", "attribution_touchpoints", ["donor_identity", "occurred_at"]
    )

    op.create_table(
        "transaction_attributions",
        sa.Column("transaction_id", sa.String(length=64), primary_key=True),
        sa.Column("is_organic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("model", sa.String(length=16), nullable=False, server_default="40_20_40"),
        sa.Column("first_touch_channel", sa.String(length=32), nullable=False),
        sa.Column("first_touch_campaign", sa.String(length=128)),
        sa.Column("first_touch_weight", WEIGHT_TYPE, nullable=False),
        sa.Column("last_touch_channel", sa.String(length=32)),
        sa.Column("last_touch_campaign", sa.String(length=128)),
        sa.Column("last_touch_weight", WEIGHT_TYPE, nullable=False),
        sa.Column("middle_touches", sa.JSON(), nullable=False),
        sa.Column("middle_touches_weight", WEIGHT_TYPE, nullable=False),
        sa.Column("total_touchpoints", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "job_heartbeats",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_success_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.String(length=128)),
        sa.Column("last_error_at", sa.DateTime(timezone=True)),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("runner_id", sa.String(length=255)),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("disabled_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "job_leases",
        sa.Column("job_name", sa.String(length=64), primary_key=True),
        sa.Column("holder", sa.String(length=255), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "job_runs",
        sa.Column("run_id", UUID_TYPE, primary_key=True),
        sa.Column("job_name", sa.String(length=64), nullable=False),
        sa.Column("runner_id", sa.String(length=255)),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errored", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deferred", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.Column("error", sa.String(length=255)),
    )
    op.create_index("ix_job_runs_job_started", "job_runs", ["job_name", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_job_started", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("job_leases")
    op.drop_table("job_heartbeats")
    op.drop_table("transaction_attributions")
    op.drop_index("ix_attribution_touchpoints_identity", table_name="attribution_touchpoints")
    op.drop_table("attribution_touchpoints")
    op.drop_index("ix_donations_donor_identity", table_name="donations")
    op.drop_index("ix_donations_donated_at", table_name="donations")
    op.drop_table("donations")
    op.drop_index("ix_entity_alerts_org_status", table_name="entity_alerts")
    op.drop_table("entity_alerts")
    op.drop_index("ix_watchlist_entries_last_evaluated", table_name="watchlist_entries")
    op.drop_index("ix_watchlist_entries_org_active", table_name="watchlist_entries")
    op.drop_table("watchlist_entries")
    op.drop_table("organizations")
    op.drop_index("ix_entity_anomalies_surfaced", table_name="entity_anomalies")
    op.drop_table("entity_anomalies")
    op.drop_index("ix_entity_trend_snapshots_entity", table_name="entity_trend_snapshots")
    op.drop_table("entity_trend_snapshots")
    op.drop_index("ix_entity_trends_calculated_at", table_name="entity_trends")
    op.drop_index("ix_entity_trends_trending", table_name="entity_trends")
    op.drop_table("entity_trends")
    op.drop_index("ix_entity_mentions_entity_key", table_name="entity_mentions")
    op.drop_index("ix_entity_mentions_mentioned_at", table_name="entity_mentions")
    op.drop_table("entity_mentions")
