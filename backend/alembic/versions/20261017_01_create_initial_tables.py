"""create users, chats, messages and notifications

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_01"
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = sa.Enum("student", "alumni", "admin", name="user_role")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("last_name", sa.String(length=128), nullable=True),
        sa.Column("profile_picture", sa.String(length=1024), nullable=True),
        sa.Column("role", USER_ROLE, nullable=False, server_default="student"),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default="google"),
        sa.Column("online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "chats",
        sa.Column("id", sa.String(length=769), primary_key=True, nullable=False),
        sa.Column("initiator_id", sa.String(length=128), nullable=False),
        sa.Column("responder_id", sa.String(length=128), nullable=False),
        sa.Column("pair_key", sa.String(length=769), nullable=False),
        sa.Column("last_message_id", sa.Integer(), nullable=True),
        sa.Column("last_message_text", sa.Text(), nullable=True),
        sa.Column("last_message_sender_id", sa.String(length=128), nullable=True),
        sa.Column("last_message_type", sa.String(length=32), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_read", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("pair_key", name="uq_chats_pair_key"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_chats_initiator_id", "chats", ["initiator_id"])
    op.create_index("ix_chats_responder_id", "chats", ["responder_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "conversation_id",
            sa.String(length=769),
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.String(length=128), nullable=False),
        sa.Column("receiver_id", sa.String(length=128), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False, server_default="text"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_messages_conversation_sent", "messages", ["conversation_id", "sent_at"])
    op.create_index(
        "ix_messages_receiver_read", "messages", ["conversation_id", "receiver_id", "read"]
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("recipient_id", sa.String(length=128), nullable=False),
        sa.Column("sender_id", sa.String(length=128), nullable=True),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("sender_role", sa.String(length=32), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_notifications_recipient_created", "notifications", ["recipient_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_recipient_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_messages_receiver_read", table_name="messages")
    op.drop_index("ix_messages_conversation_sent", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_chats_responder_id", table_name="chats")
    op.drop_index("ix_chats_initiator_id", table_name="chats")
    op.drop_table("chats")
    op.drop_table("users")
    USER_ROLE.drop(op.get_bind(), checkfirst=True)
