from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index

from ..core.config import settings
from ..db.database import Base


class LightCommand(Base):
    """
    Buffered light command queue.
    One row per envelope; the executor polls pending rows and resolves them.
    """
    __tablename__ = settings.COMMANDS_TABLE

    # Row key keeps insertion order for commands sharing a timestamp
    id = Column(Integer, primary_key=True, autoincrement=True)
    command_id = Column(String(32), unique=True, nullable=False, index=True)  # Store-assigned uuid hex

    # Command details
    command = Column(String, nullable=False)  # 'set_theme', 'set_color', 'set_blinking', 'run_effect', 'turn_off'
    parameters = Column(JSON, nullable=False, default=dict)

    # Queue management
    status = Column(String, nullable=False, default='pending', index=True)  # 'pending', 'processing', 'completed', 'failed'
    timestamp = Column(DateTime, nullable=False, index=True)  # Naive UTC creation time
    processed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    # Routing / audit
    device_id = Column(String, nullable=True, index=True)
    created_by = Column(String, nullable=False)

    __table_args__ = (
        Index('idx_status_timestamp', 'status', 'timestamp'),
    )
