import logging
from typing import Optional, Any

from sqlalchemy.orm import sessionmaker

from ..db.database import SessionLocal
from ..models.settings import ApplicationSetting

logger = logging.getLogger(__name__)

DEVICE_IP_KEY = "esp32_device_ip"


class SettingsService:
    """Service for managing database-backed application settings"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value, with optional default"""
        db = self.session_factory()
        try:
            setting = db.query(ApplicationSetting).filter(ApplicationSetting.key == key).first()
            if setting is None or setting.value is None:
                return default
            return setting.get_typed_value()
        finally:
            db.close()

    def set_setting(self, key: str, value: Any, setting_type: str = "string"):
        """Create or overwrite a setting"""
        db = self.session_factory()
        try:
            setting = db.query(ApplicationSetting).filter(ApplicationSetting.key == key).first()
            if setting is None:
                setting = ApplicationSetting(key=key)
                db.add(setting)
            setting.setting_type = setting_type
            setting.set_typed_value(value)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_setting(self, key: str) -> bool:
        db = self.session_factory()
        try:
            deleted = db.query(ApplicationSetting).filter(ApplicationSetting.key == key).delete()
            db.commit()
            return deleted > 0
        finally:
            db.close()

    # ---- light fixture address ----

    def get_device_ip(self) -> Optional[str]:
        ip = self.get_setting(DEVICE_IP_KEY)
        return ip or None

    def set_device_ip(self, ip: str):
        ip = ip.strip()
        self.set_setting(DEVICE_IP_KEY, ip)
        logger.info(f"ESP32 device IP set to: {ip}")

    def clear_device_ip(self) -> bool:
        cleared = self.delete_setting(DEVICE_IP_KEY)
        if cleared:
            logger.info("ESP32 device cleared")
        return cleared
