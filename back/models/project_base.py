from sqlalchemy import (
    Column, String, Integer, Text, Date, DateTime, ForeignKey, Enum,
    JSON, Index, func
)
from sqlalchemy.orm import relationship
from database import Base

# =====================================================================
# 正規ステータス・優先度（サーバ側の唯一の真値）
# =====================================================================
TASK_STATUSES = ("todo", "inprogress", "review", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")

# 期限切れ判定の対象になる未完了ステータス
OPEN_TASK_STATUSES = ("todo", "inprogress", "review")

TaskStatusEnum = Enum(*TASK_STATUSES, name="task_status_enum")
TaskPriorityEnum = Enum(*TASK_PRIORITIES, name="task_priority_enum")


# ---------- User -------------------------------------------------------------
class User(Base):
    __tablename__ = "user"

    id         = Column(Integer, primary_key=True, autoincrement=True)
    name       = Column(String,  nullable=False)
    email      = Column(String,  nullable=True, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    memberships = relationship(
        "ProjectMember",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User(id={self.id}, name={self.name})>"


# ---------- Project ----------------------------------------------------------
class Project(Base):
    __tablename__ = "project"

    id         = Column(Integer, primary_key=True, autoincrement=True)
    name       = Column(String,  nullable=False)
    user_id    = Column(Integer, ForeignKey("user.id"), nullable=False, index=True)  # オーナー
    # {"methodology": "kanban" | "scrum" | "agile" | "waterfall" | "lean", ...}
    meta       = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    owner = relationship("User")
    members = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
    )
    tasks = relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Project(id={self.id}, name={self.name})>"


# ---------- Project–User link ------------------------------------------------
class ProjectMember(Base):
    __tablename__ = "projectMember"

    id         = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("project.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id    = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"),    nullable=False, index=True)
    role       = Column(String,  nullable=True)  # "owner" / "member" など

    project = relationship("Project", back_populates="members")
    user    = relationship("User", back_populates="memberships")

    __table_args__ = (
        # 同じユーザーを同じプロジェクトに二重登録しない
        Index("ux_project_member_unique", "project_id", "user_id", unique=True),
    )

    def __repr__(self):
        return f"<ProjectMember(project_id={self.project_id}, user_id={self.user_id})>"


# ---------- Task -------------------------------------------------------------
class Task(Base):
    __tablename__ = "task"

    id          = Column(Integer, primary_key=True, autoincrement=True)
    project_id  = Column(Integer, ForeignKey("project.id", ondelete="CASCADE"), nullable=False, index=True)
    title       = Column(String,  nullable=False)
    description = Column(Text,    nullable=True)
    status      = Column(TaskStatusEnum,   nullable=False, default="todo")
    priority    = Column(TaskPriorityEnum, nullable=False, default="medium")
    assignee_id = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True, index=True)
    creator_id  = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    start_date  = Column(Date, nullable=True)
    end_date    = Column(Date, nullable=True)
    created_at  = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at  = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    project  = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assignee_id])
    creator  = relationship("User", foreign_keys=[creator_id])

    __table_args__ = (
        Index("ix_task_end_date", "end_date"),
        Index("ix_task_project_status", "project_id", "status"),
        Index("ix_task_priority", "priority"),
    )

    def __repr__(self):
        return f"<Task(id={self.id}, project_id={self.project_id}, title={self.title})>"
