"""create game, question, question_state, player and buzz_event tables

Revision ID: 3c7d9a1e5b20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7d9a1e5b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_code', sa.String(length=12), nullable=False),
        sa.Column('mc_token_hash', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('paused_from', sa.String(length=16), nullable=True),
        sa.Column('allow_negative_points', sa.Boolean(), nullable=False),
        sa.Column('current_question_index', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_game_code', 'game', ['game_code'], unique=True)

    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('index', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('answer', sa.Text(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'index', name='uq_question_game_index'),
    )

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=30), nullable=False),
        sa.Column('name_key', sa.String(length=30), nullable=False),
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('is_connected', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'name_key', name='uq_player_game_name_key'),
    )
    op.create_index('ix_player_game_id', 'player', ['game_id'])

    op.create_table(
        'question_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('winner_player_id', sa.Integer(), nullable=True),
        sa.Column('resolved_by_player_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['question_id'], ['question.id']),
        sa.ForeignKeyConstraint(['winner_player_id'], ['player.id']),
        sa.ForeignKeyConstraint(['resolved_by_player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'question_id', name='uq_question_state_game_question'),
        sa.CheckConstraint(
            "(status = 'locked' AND winner_player_id IS NOT NULL) OR "
            "(status != 'locked' AND winner_player_id IS NULL)",
            name='ck_question_state_winner_iff_locked',
        ),
    )
    op.create_index('ix_question_state_game_id', 'question_state', ['game_id'])

    op.create_table(
        'question_state_locked_player',
        sa.Column('question_state_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['question_state_id'], ['question_state.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('question_state_id', 'player_id'),
    )

    op.create_table(
        'buzz_event',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('client_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('server_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('result', sa.String(length=32), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['question_id'], ['question.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_buzz_event_game_id', 'buzz_event', ['game_id'])


def downgrade():
    op.drop_index('ix_buzz_event_game_id', table_name='buzz_event')
    op.drop_table('buzz_event')
    op.drop_table('question_state_locked_player')
    op.drop_index('ix_question_state_game_id', table_name='question_state')
    op.drop_table('question_state')
    op.drop_index('ix_player_game_id', table_name='player')
    op.drop_table('player')
    op.drop_table('question')
    op.drop_index('ix_game_game_code', table_name='game')
    op.drop_table('game')
