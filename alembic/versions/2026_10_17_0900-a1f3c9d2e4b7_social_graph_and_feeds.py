"""social_graph_and_feeds

Revision ID: a1f3c9d2e4b7
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1f3c9d2e4b7"
down_revision = None
branch_labels = None
depends_on = None

POST_TYPES = ("text", "image", "video", "song")
POST_VISIBILITIES = ("public", "followers", "private")


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("followers_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("following_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("friends_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_username", "user", ["username"], unique=True)

    op.create_table(
        "userfollow",
        sa.Column("follower_id", sa.String(), nullable=False),
        sa.Column("followed_id", sa.String(), nullable=False),
        sa.Column("is_mutual", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("follower_id <> followed_id", name="ck_userfollow_no_self_follow"),
        sa.ForeignKeyConstraint(["follower_id"], ["user.id"]),
        sa.ForeignKeyConstraint(["followed_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("follower_id", "followed_id"),
    )
    op.create_index("ix_userfollow_follower_id", "userfollow", ["follower_id"])
    op.create_index("ix_userfollow_followed_id", "userfollow", ["followed_id"])
    op.create_index("ix_userfollow_follower_created", "userfollow", ["follower_id", "created_at"])
    op.create_index("ix_userfollow_followed_created", "userfollow", ["followed_id", "created_at"])

    op.create_table(
        "friendship",
        sa.Column("user_id_1", sa.String(), nullable=False),
        sa.Column("user_id_2", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("user_id_1 < user_id_2", name="ck_friendship_canonical_order"),
        sa.ForeignKeyConstraint(["user_id_1"], ["user.id"]),
        sa.ForeignKeyConstraint(["user_id_2"], ["user.id"]),
        sa.PrimaryKeyConstraint("user_id_1", "user_id_2"),
    )
    op.create_index("ix_friendship_user_id_1", "friendship", ["user_id_1"])
    op.create_index("ix_friendship_user_id_2", "friendship", ["user_id_2"])

    op.create_table(
        "post",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("author_id", sa.String(), nullable=False),
        sa.Column("content", sa.String(length=5000), nullable=False),
        sa.Column("post_type", sa.Enum(*POST_TYPES, name="posttype"), nullable=False),
        sa.Column("visibility", sa.Enum(*POST_VISIBILITIES, name="postvisibility"), nullable=False),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("likes_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comments_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reposts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["author_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_post_author_id", "post", ["author_id"])
    op.create_index("ix_post_visibility", "post", ["visibility"])
    op.create_index("ix_post_deleted", "post", ["deleted"])
    op.create_index("ix_post_author_created_id", "post", ["author_id", "created_at", "id"])
    op.create_index("ix_post_created_id", "post", ["created_at", "id"])

    op.create_table(
        "posttag",
        sa.Column("post_id", sa.String(), nullable=False),
        sa.Column("tag", sa.String(length=100), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["post.id"]),
        sa.PrimaryKeyConstraint("post_id", "tag"),
    )
    op.create_index("ix_posttag_tag", "posttag", ["tag"])

    op.create_table(
        "feeddefinition",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("blocks", sa.JSON(), nullable=False),
        sa.Column("combine_mode", sa.String(length=3), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_feeddefinition_owner_id", "feeddefinition", ["owner_id"])
    op.create_index(
        "uq_feeddefinition_owner_lower_name",
        "feeddefinition",
        ["owner_id", sa.text("lower(name)")],
        unique=True,
    )
    op.create_index(
        "uq_feeddefinition_owner_default",
        "feeddefinition",
        ["owner_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )


def downgrade() -> None:
    op.drop_table("feeddefinition")
    op.drop_table("posttag")
    op.drop_table("post")
    op.drop_table("friendship")
    op.drop_table("userfollow")
    op.drop_table("user")
    op.execute("DROP TYPE IF EXISTS postvisibility")
    op.execute("DROP TYPE IF EXISTS posttype")
