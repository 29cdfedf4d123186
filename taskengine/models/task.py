# taskengine/models/task.py
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, Integer, Text, DateTime, Boolean, JSON, ForeignKey

from .database import Base


class TaskType(str, Enum):
    """Task categories; each selects one execution strategy"""
    browser_automation = "browser_automation"
    api_call = "api_call"
    ghl_action = "ghl_action"
    notification = "notification"
    reminder = "reminder"
    data_extraction = "data_extraction"
    report_generation = "report_generation"
    custom = "custom"


class TaskStatus(str, Enum):
    pending = "pending"
    queued = "queued"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class ExecutionStatus(str, Enum):
    running = "running"
    success = "success"
    failed = "failed"


RUNNABLE_TASK_STATUSES = {TaskStatus.pending.value, TaskStatus.queued.value}


class Task(Base):
    """User-defined unit of automatable work

    execution_config is a JSON document whose required shape depends on
    task_type (see taskengine.executor.validation).
    """
    __tablename__ = "agency_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    task_type = Column(String(50), nullable=False)
    execution_config = Column(JSON, nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=TaskStatus.pending.value, index=True)
    status_reason = Column(Text, nullable=True)
    error_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)
    result_summary = Column(Text, nullable=True)

    # Control flags
    assigned_to_bot = Column(Boolean, nullable=False, default=False)
    requires_human_review = Column(Boolean, nullable=False, default=False)
    human_reviewed_by = Column(Integer, nullable=True)
    human_reviewed_at = Column(DateTime, nullable=True)
    notify_on_complete = Column(Boolean, nullable=False, default=False)
    notify_on_failure = Column(Boolean, nullable=False, default=False)

    # Timing
    scheduled_for = Column(DateTime, nullable=True)  # NULL means run as soon as eligible
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Provenance
    source_webhook_id = Column(Integer, ForeignKey("user_webhooks.id"), nullable=True)
    conversation_id = Column(Integer, nullable=True)


class TaskExecution(Base):
    """One attempt at running a task; immutable once success/failed"""
    __tablename__ = "task_executions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("agency_tasks.id"), nullable=False, index=True)
    triggered_by = Column(String(50), nullable=False, default="automatic")
    attempt_number = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=ExecutionStatus.running.value)

    output = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    duration = Column(Integer, nullable=True)  # milliseconds
    screenshots = Column(JSON, nullable=True)

    # Browser automation side channel, written once the session exists
    browser_session_id = Column(String(128), nullable=True)
    debug_url = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)


class UserWebhook(Base):
    """Inbound trigger / outbound notification channel owned by a user"""
    __tablename__ = "user_webhooks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    webhook_type = Column(String(50), nullable=True)
    outbound_enabled = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class OutboundMessage(Base):
    """Message queued for delivery through a webhook channel"""
    __tablename__ = "outbound_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(Integer, ForeignKey("user_webhooks.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)
    task_id = Column(Integer, ForeignKey("agency_tasks.id"), nullable=True, index=True)
    conversation_id = Column(Integer, nullable=True)
    message_type = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)
    recipient_identifier = Column(String(255), nullable=False, default="owner")
    delivery_status = Column(String(20), nullable=False, default="pending")
    scheduled_for = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    sent_at = Column(DateTime, nullable=True)


class InboundMessage(Base):
    """Message received on a webhook channel"""
    __tablename__ = "inbound_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(Integer, ForeignKey("user_webhooks.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    sender_identifier = Column(String(255), nullable=True)
    message_type = Column(String(50), nullable=True)
    content = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
