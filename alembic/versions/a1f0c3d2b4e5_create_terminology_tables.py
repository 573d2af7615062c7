"""Create terminology tables

Registro NAMASTE y CIE-11, grafo de mapeos con índice inverso, atajos
NAMASTE, Conditions con codificación dual, jobs administrativos y audit log.

Revision ID: a1f0c3d2b4e5
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = "a1f0c3d2b4e5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

traditional_system = sa.Enum("AYURVEDA", "SIDDHA", "UNANI", name="traditionalsystem")
icd11_code_type = sa.Enum("TM2", "BIOMEDICINE", name="icd11codetype")
mapping_equivalence = sa.Enum(
    "RELATEDTO", "EQUIVALENT", "EQUAL", "WIDER", "SUBSUMES",
    "NARROWER", "SPECIALIZES", "INEXACT", "UNMATCHED", "DISJOINT",
    name="mappingequivalence",
)
job_type = sa.Enum("GENERATE_MAPPINGS", "RELOAD_NAMASTE", "SYNC_ICD11", name="jobtype")
job_status = sa.Enum("QUEUED", "RUNNING", "SUCCEEDED", "FAILED", "CANCELLED", name="jobstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ── namaste_codes ────────────────────────────────
    op.create_table(
        "namaste_codes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("code", sa.String(64), nullable=False, comment="Código NAMASTE"),
        sa.Column("display", sa.String(500), nullable=False, comment="Término preferido"),
        sa.Column("definition", sa.Text()),
        sa.Column("system", traditional_system, nullable=False),
        sa.Column("category", sa.String(200)),
        sa.Column("subcategory", sa.String(200)),
        sa.Column("who_terminology_code", sa.String(64)),
        sa.Column("version", sa.String(20), nullable=False, server_default="1.0"),
        *_timestamps(),
        sa.UniqueConstraint("system", "code", name="uq_namaste_system_code"),
    )
    op.create_index("idx_namaste_code", "namaste_codes", ["code"])
    op.create_index("idx_namaste_system_category", "namaste_codes", ["system", "category"])

    # ── icd11_codes ──────────────────────────────────
    op.create_table(
        "icd11_codes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("code", sa.String(64), nullable=False, comment="Código CIE-11"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("definition", sa.Text()),
        sa.Column("code_type", icd11_code_type, nullable=False),
        sa.Column("parent_code", sa.String(64)),
        sa.Column("chapter", sa.String(200)),
        sa.Column("synonyms", JSONB()),
        sa.Column("foundation_uri", sa.String(500)),
        sa.Column("linearization_uri", sa.String(500)),
        *_timestamps(),
        sa.UniqueConstraint("code_type", "code", name="uq_icd11_type_code"),
    )
    op.create_index("idx_icd11_code", "icd11_codes", ["code"])
    op.create_index("idx_icd11_type_chapter", "icd11_codes", ["code_type", "chapter"])

    # ── concept_mappings ─────────────────────────────
    op.create_table(
        "concept_mappings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("source_system", sa.String(255), nullable=False),
        sa.Column("source_code", sa.String(64), nullable=False),
        sa.Column("target_system", sa.String(255), nullable=False),
        sa.Column("target_code", sa.String(64), nullable=False),
        sa.Column("equivalence", mapping_equivalence, nullable=False),
        sa.Column("comment", sa.Text()),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default="1.0", comment="Confianza en [0, 1]"),
        sa.Column("mapping_version", sa.String(20), nullable=False, server_default="1.0"),
        sa.Column("is_automatic", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint(
            "source_system", "source_code", "target_system", "target_code",
            name="uq_mapping_natural_key",
        ),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_mapping_confidence_range",
        ),
    )
    op.create_index("idx_mapping_source", "concept_mappings", ["source_system", "source_code"])
    op.create_index("idx_mapping_target", "concept_mappings", ["target_system", "target_code"])
    op.create_index("idx_mapping_systems", "concept_mappings", ["source_system", "target_system"])

    # ── namaste_mapping_shortcuts ────────────────────
    op.create_table(
        "namaste_mapping_shortcuts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("icd11_tm2_code", sa.String(64)),
        sa.Column("icd11_biomedicine_code", sa.String(64)),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ── conditions ───────────────────────────────────
    op.create_table(
        "conditions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("patient_id", sa.String(100), nullable=False),
        sa.Column("namaste_code", sa.String(64), nullable=False),
        sa.Column("clinical_status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("onset", sa.DateTime(timezone=True)),
        sa.Column("note", sa.Text()),
        sa.Column("codings", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_conditions_patient", "conditions", ["patient_id", "recorded_at"])

    # ── admin_jobs ───────────────────────────────────
    op.create_table(
        "admin_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("job_type", job_type, nullable=False),
        sa.Column("status", job_status, nullable=False, server_default="QUEUED"),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("result", JSONB()),
        sa.Column("error_message", sa.String(2000)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
    )
    op.create_index("idx_admin_jobs_type_status", "admin_jobs", ["job_type", "status"])

    # ── audit_log (INSERT-only) ──────────────────────
    op.create_table(
        "audit_log",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("old_data", JSONB()),
        sa.Column("new_data", JSONB()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_log_entity", "audit_log", ["entity"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_index("ix_audit_log_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("idx_admin_jobs_type_status", table_name="admin_jobs")
    op.drop_table("admin_jobs")
    op.drop_index("idx_conditions_patient", table_name="conditions")
    op.drop_table("conditions")
    op.drop_table("namaste_mapping_shortcuts")
    op.drop_index("idx_mapping_systems", table_name="concept_mappings")
    op.drop_index("idx_mapping_target", table_name="concept_mappings")
    op.drop_index("idx_mapping_source", table_name="concept_mappings")
    op.drop_table("concept_mappings")
    op.drop_index("idx_icd11_type_chapter", table_name="icd11_codes")
    op.drop_index("idx_icd11_code", table_name="icd11_codes")
    op.drop_table("icd11_codes")
    op.drop_index("idx_namaste_system_category", table_name="namaste_codes")
    op.drop_index("idx_namaste_code", table_name="namaste_codes")
    op.drop_table("namaste_codes")

    for enum_type in (job_status, job_type, mapping_equivalence, icd11_code_type, traditional_system):
        enum_type.drop(op.get_bind(), checkfirst=True)
