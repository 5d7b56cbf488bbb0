"""create_poll_engine_tables

Revision ID: 3b7e2a91c4d0
Revises:
Create Date: 2026-10-18 09:12:44.310227

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b7e2a91c4d0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _adjudication_columns() -> list:
    return [
        sa.Column('patient_identifier', sa.String(length=100), nullable=True),
        sa.Column('provider_identifier', sa.String(length=100), nullable=True),
        sa.Column('service_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('outcome', sa.String(length=50), nullable=True),
        sa.Column('adjudication_outcome', sa.String(length=50), nullable=True),
        sa.Column('disposition', sa.Text(), nullable=True),
        sa.Column('approved_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('response_bundle', sa.JSON(), nullable=True),
        sa.Column('response_date', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # Poll audit trail
    op.create_table(
        'poll_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('poll_id', sa.String(length=36), nullable=False),
        sa.Column('trigger_type', sa.String(length=20), nullable=False),
        sa.Column('provider_nphies_id', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('request_bundle', sa.JSON(), nullable=True),
        sa.Column('response_bundle', sa.JSON(), nullable=True),
        sa.Column('response_code', sa.String(length=50), nullable=True),
        sa.Column('messages_received', sa.Integer(), nullable=False),
        sa.Column('messages_matched', sa.Integer(), nullable=False),
        sa.Column('messages_unmatched', sa.Integer(), nullable=False),
        sa.Column('messages_errored', sa.Integer(), nullable=False),
        sa.Column('processing_summary', sa.JSON(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('poll_id'),
    )
    op.create_index('ix_poll_logs_trigger_type', 'poll_logs', ['trigger_type'])
    op.create_index('ix_poll_logs_status', 'poll_logs', ['status'])
    op.create_index('ix_poll_logs_started_at', 'poll_logs', ['started_at'])
    op.create_index('idx_poll_logs_status_started', 'poll_logs', ['status', 'started_at'])

    op.create_table(
        'poll_messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('poll_log_id', sa.Integer(), nullable=False),
        sa.Column('message_header_id', sa.String(length=255), nullable=True),
        sa.Column('response_identifier', sa.String(length=255), nullable=True),
        sa.Column('event_code', sa.String(length=100), nullable=True),
        sa.Column('resource_type', sa.String(length=100), nullable=False),
        sa.Column('resource_data', sa.JSON(), nullable=True),
        sa.Column('fingerprint', sa.String(length=64), nullable=False),
        sa.Column('message_type', sa.String(length=20), nullable=False),
        sa.Column('matched', sa.Boolean(), nullable=False),
        sa.Column('matched_table', sa.String(length=100), nullable=True),
        sa.Column('matched_record_id', sa.Integer(), nullable=True),
        sa.Column('match_strategy', sa.String(length=50), nullable=True),
        sa.Column('processing_status', sa.String(length=20), nullable=False),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('replayed', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['poll_log_id'], ['poll_logs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_poll_messages_poll_log_id', 'poll_messages', ['poll_log_id'])
    op.create_index('ix_poll_messages_resource_type', 'poll_messages', ['resource_type'])
    op.create_index('ix_poll_messages_fingerprint', 'poll_messages', ['fingerprint'])
    op.create_index('ix_poll_messages_message_type', 'poll_messages', ['message_type'])
    op.create_index('ix_poll_messages_matched', 'poll_messages', ['matched'])
    op.create_index('ix_poll_messages_processing_status', 'poll_messages', ['processing_status'])
    op.create_index('ix_poll_messages_created_at', 'poll_messages', ['created_at'])
    op.create_index(
        'idx_poll_messages_resource_response', 'poll_messages',
        ['resource_type', 'response_identifier'],
    )
    op.create_index(
        'idx_poll_messages_matched_record', 'poll_messages',
        ['matched_table', 'matched_record_id'],
    )

    # Idempotence ledger
    op.create_table(
        'reconciliation_receipts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('fingerprint', sa.String(length=64), nullable=False),
        sa.Column('resource_type', sa.String(length=100), nullable=False),
        sa.Column('response_identifier', sa.String(length=255), nullable=True),
        sa.Column('processing_status', sa.String(length=20), nullable=False),
        sa.Column('matched_table', sa.String(length=100), nullable=False),
        sa.Column('matched_record_id', sa.Integer(), nullable=False),
        sa.Column('match_strategy', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fingerprint'),
    )

    # Business tables
    op.create_table(
        'prior_authorizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('request_number', sa.String(length=100), nullable=False),
        sa.Column('nphies_request_id', sa.String(length=100), nullable=True),
        sa.Column('outbound_message_header_id', sa.String(length=255), nullable=True),
        *_adjudication_columns(),
        sa.Column('pre_auth_ref', sa.String(length=100), nullable=True),
        sa.Column('pre_auth_period_start', sa.String(length=40), nullable=True),
        sa.Column('pre_auth_period_end', sa.String(length=40), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_prior_authorizations_request_number', 'prior_authorizations', ['request_number'])
    op.create_index('ix_prior_authorizations_nphies_request_id', 'prior_authorizations', ['nphies_request_id'])
    op.create_index(
        'ix_prior_authorizations_outbound_message_header_id', 'prior_authorizations',
        ['outbound_message_header_id'],
    )
    op.create_index('ix_prior_authorizations_status', 'prior_authorizations', ['status'])
    op.create_index(
        'idx_pa_heuristic', 'prior_authorizations',
        ['patient_identifier', 'provider_identifier', 'service_date'],
    )

    op.create_table(
        'claim_submissions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('claim_number', sa.String(length=100), nullable=False),
        sa.Column('nphies_claim_id', sa.String(length=100), nullable=True),
        sa.Column('nphies_request_id', sa.String(length=100), nullable=True),
        sa.Column('outbound_message_header_id', sa.String(length=255), nullable=True),
        *_adjudication_columns(),
        sa.Column('paid_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('payment_reference', sa.String(length=100), nullable=True),
        sa.Column('payment_date', sa.String(length=40), nullable=True),
        sa.Column('payment_status', sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_claim_submissions_claim_number', 'claim_submissions', ['claim_number'])
    op.create_index('ix_claim_submissions_nphies_claim_id', 'claim_submissions', ['nphies_claim_id'])
    op.create_index('ix_claim_submissions_nphies_request_id', 'claim_submissions', ['nphies_request_id'])
    op.create_index(
        'ix_claim_submissions_outbound_message_header_id', 'claim_submissions',
        ['outbound_message_header_id'],
    )
    op.create_index('ix_claim_submissions_status', 'claim_submissions', ['status'])
    op.create_index(
        'idx_cs_heuristic', 'claim_submissions',
        ['patient_identifier', 'provider_identifier', 'service_date'],
    )

    op.create_table(
        'advanced_authorizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('identifier_value', sa.String(length=255), nullable=False),
        sa.Column('identifier_system', sa.String(length=255), nullable=True),
        sa.Column('nphies_response_id', sa.String(length=100), nullable=True),
        sa.Column('patient_identifier', sa.String(length=100), nullable=True),
        sa.Column('insurer_identifier', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=True),
        sa.Column('outcome', sa.String(length=50), nullable=True),
        sa.Column('adjudication_outcome', sa.String(length=50), nullable=True),
        sa.Column('pre_auth_ref', sa.String(length=100), nullable=True),
        sa.Column('pre_auth_period_start', sa.String(length=40), nullable=True),
        sa.Column('pre_auth_period_end', sa.String(length=40), nullable=True),
        sa.Column('response_bundle', sa.JSON(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identifier_value'),
    )

    op.create_table(
        'nphies_communications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('communication_id', sa.String(length=255), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('parent_table', sa.String(length=100), nullable=True),
        sa.Column('parent_record_id', sa.Integer(), nullable=True),
        sa.Column('about_identifier', sa.String(length=255), nullable=True),
        sa.Column('about_reference', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=True),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=True),
        sa.Column('payload_text', sa.Text(), nullable=True),
        sa.Column('sender_identifier', sa.String(length=100), nullable=True),
        sa.Column('resource_data', sa.JSON(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('communication_id'),
    )
    op.create_index('ix_nphies_communications_about_identifier', 'nphies_communications', ['about_identifier'])
    op.create_index('idx_comm_parent', 'nphies_communications', ['parent_table', 'parent_record_id'])


def downgrade() -> None:
    op.drop_table('nphies_communications')
    op.drop_table('advanced_authorizations')
    op.drop_table('claim_submissions')
    op.drop_table('prior_authorizations')
    op.drop_table('reconciliation_receipts')
    op.drop_table('poll_messages')
    op.drop_table('poll_logs')
