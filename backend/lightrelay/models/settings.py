import json

from sqlalchemy import Column, String, Text, DateTime, func

from ..db.database import Base


class ApplicationSetting(Base):
    """
    Database-backed key/value settings shared by every producer process
    (device address, last chosen theme, ...)
    """
    __tablename__ = "application_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    setting_type = Column(String(20), default="string")  # string, boolean, json, integer
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def get_typed_value(self):
        """Decode the stored text according to setting_type"""
        if self.value is None:
            return None

        if self.setting_type == "boolean":
            return self.value.lower() in ("true", "1", "yes", "on")
        if self.setting_type == "integer":
            try:
                return int(self.value)
            except ValueError:
                return 0
        if self.setting_type == "json":
            try:
                return json.loads(self.value)
            except json.JSONDecodeError:
                return {}
        return self.value

    def set_typed_value(self, value):
        if value is None:
            self.value = None
        elif self.setting_type == "boolean":
            self.value = "true" if value else "false"
        elif self.setting_type == "json":
            self.value = json.dumps(value)
        else:
            self.value = str(value)
