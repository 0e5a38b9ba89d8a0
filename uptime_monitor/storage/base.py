"""存储契约

监控核心只通过这里定义的窄接口读写记录。每个方法都是针对单个实体的原子操作，
不需要跨实体事务。
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..models.alert import Alert, AlertStatus, AlertType
from ..models.health_check import CheckStatus, HealthCheck
from ..models.incident import Incident
from ..models.service import MaintenanceWindow, Service, Settings


class MonitorStore(ABC):
    """持久化存储抽象基类"""

    # 服务
    @abstractmethod
    async def list_services(self, include_deleted: bool = False) -> List[Service]:
        """列出服务，默认排除已软删除的服务"""

    @abstractmethod
    async def get_service(self, service_id: str) -> Optional[Service]:
        """获取未删除的服务"""

    @abstractmethod
    async def save_service(self, service: Service) -> None:
        """按 id 插入或整体替换服务"""

    @abstractmethod
    async def update_service_status(self, service_id: str, status: CheckStatus,
                                    checked_at: datetime) -> None:
        """回写 last_status / last_checked_at"""

    @abstractmethod
    async def update_service_dependencies(self, service_id: str,
                                          dependencies: List[str]) -> None:
        """替换服务的依赖列表"""

    # 健康检查记录
    @abstractmethod
    async def insert_health_check(self, check: HealthCheck) -> None:
        """追加一条探测记录"""

    @abstractmethod
    async def get_recent_health_checks(self, service_id: str, limit: int = 10) -> List[HealthCheck]:
        """按时间倒序返回最近的探测记录"""

    # 事件
    @abstractmethod
    async def get_open_incident(self, service_id: str) -> Optional[Incident]:
        """获取服务当前处于OPEN状态的事件"""

    @abstractmethod
    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        pass

    @abstractmethod
    async def insert_incident(self, incident: Incident) -> None:
        """
        新建事件

        Raises:
            StorageError: 该服务已有OPEN事件
        """

    @abstractmethod
    async def increment_failed_checks(self, incident_id: str) -> Optional[Incident]:
        """对OPEN事件的 failed_checks 加一，事件不存在或已关闭时返回None"""

    @abstractmethod
    async def close_incident(self, incident_id: str, end_time: datetime) -> Optional[Incident]:
        """关闭OPEN事件并写入 end_time / duration，事件已关闭时返回None"""

    @abstractmethod
    async def set_incident_correlation(self, incident_id: str, correlation_id: str,
                                       root_cause_service_id: str) -> None:
        """标记事件属于某个关联组"""

    @abstractmethod
    async def add_impacted_services(self, incident_id: str, service_ids: List[str]) -> None:
        """向根因事件追加受影响的服务（去重）"""

    @abstractmethod
    async def list_incidents(self, service_id: str,
                             overlapping_since: Optional[datetime] = None) -> List[Incident]:
        """列出服务的事件；给定时间时只返回仍为OPEN或在该时间之后结束的事件"""

    @abstractmethod
    async def list_correlated_incidents(self, correlation_id: str) -> List[Incident]:
        pass

    # 告警
    @abstractmethod
    async def insert_alert(self, alert: Alert) -> None:
        pass

    @abstractmethod
    async def finalize_alert(self, alert: Alert) -> bool:
        """
        把PENDING告警更新为终态

        Returns:
            bool: 记录仍为PENDING并已更新时为True
        """

    @abstractmethod
    async def count_recent_alerts(self, service_id: str, alert_type: AlertType,
                                  since: datetime) -> int:
        """统计 created_at >= since 的同类告警数量"""

    @abstractmethod
    async def list_alerts(self, status: Optional[AlertStatus] = None,
                          service_id: Optional[str] = None, limit: int = 100) -> List[Alert]:
        pass

    # 维护窗口
    @abstractmethod
    async def insert_maintenance_window(self, window: MaintenanceWindow) -> None:
        pass

    @abstractmethod
    async def list_maintenance_windows(self, service_id: str) -> List[MaintenanceWindow]:
        pass

    async def get_active_maintenance_window(self, service_id: str,
                                            at: datetime) -> Optional[MaintenanceWindow]:
        for window in await self.list_maintenance_windows(service_id):
            if window.is_active(at):
                return window
        return None

    # 全局设置
    @abstractmethod
    async def get_settings(self) -> Settings:
        """读取全局设置，不存在时以默认值创建"""

    @abstractmethod
    async def save_settings(self, settings: Settings) -> None:
        pass

    # 心跳与维护
    @abstractmethod
    async def insert_heartbeat(self, timestamp: datetime) -> None:
        pass

    @abstractmethod
    async def ensure_indexes(self) -> None:
        pass

    @abstractmethod
    async def purge_old_records(self, health_checks_before: datetime,
                                incidents_before: datetime, alerts_before: datetime,
                                heartbeats_before: datetime) -> Dict[str, int]:
        """删除过期记录，返回每个集合删除的数量"""

    async def close(self) -> None:
        pass
