"""Initial schema for the account backup and pipeline queue

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Subscribed podcasts (tombstoned when unsubscribed)
    op.create_table(
        'podcasts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('author', sa.String(512), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('url', sa.String(2048), nullable=True),
        sa.Column('slug', sa.String(512), nullable=True),
        sa.Column('date_added', sa.DateTime, nullable=True),
        sa.Column('folder_id', sa.String(36), nullable=True),
        sa.Column('sort_position', sa.Integer, nullable=True),
        sa.Column('episode_count', sa.Integer, nullable=True),
        sa.Column('last_episode_id', sa.String(36), nullable=True),
        sa.Column('last_episode_published_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
        sa.Column('deleted_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_podcasts_sort_position', 'podcasts', ['sort_position'])
    op.create_index('ix_podcasts_deleted_at', 'podcasts', ['deleted_at'])

    # Interacted episodes (podcast_id is a weak reference, no foreign key)
    op.create_table(
        'episodes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('podcast_id', sa.String(36), nullable=False),
        sa.Column('podcast_title', sa.String(512), nullable=True),
        sa.Column('podcast_slug', sa.String(512), nullable=True),
        sa.Column('author', sa.String(512), nullable=True),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('url', sa.String(2048), nullable=True),
        sa.Column('published_at', sa.DateTime, nullable=True),
        sa.Column('duration', sa.Integer, nullable=True),
        sa.Column('file_type', sa.String(64), nullable=True),
        sa.Column('file_size', sa.Integer, nullable=True),
        sa.Column('slug', sa.String(512), nullable=True),
        sa.Column('episode_type', sa.String(32), nullable=True),
        sa.Column('episode_season', sa.Integer, nullable=True),
        sa.Column('episode_number', sa.Integer, nullable=True),
        sa.Column('playing_status', sa.Integer, nullable=True),
        sa.Column('played_up_to', sa.Integer, nullable=True),
        sa.Column('starred', sa.Boolean, nullable=True),
        sa.Column('is_archived', sa.Boolean, nullable=True),
        sa.Column('first_played_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_episodes_podcast_id', 'episodes', ['podcast_id'])
    op.create_index('ix_episodes_published_at', 'episodes', ['published_at'])
    op.create_index('ix_episodes_playing_status', 'episodes', ['playing_status'])
    op.create_index('ix_episodes_first_played_at', 'episodes', ['first_played_at'])

    # Bookmarks (tombstoned when removed remotely)
    op.create_table(
        'bookmarks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('podcast_id', sa.String(36), nullable=False),
        sa.Column('episode_id', sa.String(36), nullable=False),
        sa.Column('time', sa.Integer, nullable=True),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
        sa.Column('deleted_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_bookmarks_podcast_id', 'bookmarks', ['podcast_id'])
    op.create_index('ix_bookmarks_episode_id', 'bookmarks', ['episode_id'])

    # Fan-out completion barrier
    op.create_table(
        'sync_progress',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('run_id', sa.String(36), nullable=False),
        sa.Column('total', sa.Integer, nullable=False),
        sa.Column('completed', sa.Integer, nullable=False),
        sa.Column('started_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
    )
    op.create_table(
        'sync_progress_completions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('run_id', sa.String(36), nullable=False),
        sa.Column('podcast_id', sa.String(36), nullable=False),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('run_id', 'podcast_id', name='uq_completion_run_podcast'),
    )

    # Durable pipeline queue
    op.create_table(
        'pipeline_messages',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('dedupe_key', sa.String(128), nullable=True, unique=True),
        sa.Column('status', sa.String(32), nullable=True),
        sa.Column('attempts', sa.Integer, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=True),
        sa.Column('locked_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_pipeline_messages_status', 'pipeline_messages', ['status', 'id'])


def downgrade() -> None:
    op.drop_index('ix_pipeline_messages_status', table_name='pipeline_messages')
    op.drop_table('pipeline_messages')
    op.drop_table('sync_progress_completions')
    op.drop_table('sync_progress')
    op.drop_index('ix_bookmarks_episode_id', table_name='bookmarks')
    op.drop_index('ix_bookmarks_podcast_id', table_name='bookmarks')
    op.drop_table('bookmarks')
    op.drop_index('ix_episodes_first_played_at', table_name='episodes')
    op.drop_index('ix_episodes_playing_status', table_name='episodes')
    op.drop_index('ix_episodes_published_at', table_name='episodes')
    op.drop_index('ix_episodes_podcast_id', table_name='episodes')
    op.drop_table('episodes')
    op.drop_index('ix_podcasts_deleted_at', table_name='podcasts')
    op.drop_index('ix_podcasts_sort_position', table_name='podcasts')
    op.drop_table('podcasts')
