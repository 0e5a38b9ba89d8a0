#!/usr/bin/env python3
"""
服务可用性监控系统主应用程序入口

集成所有组件，实现应用程序启动和优雅关闭，
添加信号处理和异常捕获。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import timedelta
from typing import Optional, Dict, Any, List

from uptime_monitor.alerts.dispatcher import AlertDispatcher
from uptime_monitor.alerts.integrator import AlertIntegrator, build_alerters, parse_channels
from uptime_monitor.api.server import MonitorApiServer
from uptime_monitor.checkers.runner import ProbeRunner
from uptime_monitor.models.health_check import HealthCheck
from uptime_monitor.services.config_manager import ConfigManager
from uptime_monitor.services.dependency_graph import validate_dependency_graph
from uptime_monitor.services.incident_correlator import IncidentCorrelator
from uptime_monitor.services.incident_detector import IncidentDetector
from uptime_monitor.services.jobs import (
    CleanupJob, HealthCheckJob, HeartbeatJob, DEFAULT_DUE_TOLERANCE
)
from uptime_monitor.services.scheduler import JobScheduler
from uptime_monitor.services.service_monitor import ServiceMonitor
from uptime_monitor.storage import MemoryStore, MongoStore, MonitorStore
from uptime_monitor.utils.exceptions import ConfigurationError, MonitorError
from uptime_monitor.utils.log_manager import log_manager, get_logger

# 版本信息
__version__ = "1.0.0"


class MonitorApp:
    """服务可用性监控系统主应用程序类"""

    def __init__(self, config_path: str, log_overrides: Optional[Dict[str, Any]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_overrides: 命令行传入的日志配置，覆盖配置文件中的设置
        """
        self.config_path = config_path
        self.log_overrides = log_overrides or {}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.store: Optional[MonitorStore] = None
        self.detector: Optional[IncidentDetector] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.alert_integrator: Optional[AlertIntegrator] = None
        self.service_monitor: Optional[ServiceMonitor] = None
        self.scheduler: Optional[JobScheduler] = None
        self.api_server: Optional[MonitorApiServer] = None

    async def initialize(self):
        """初始化应用程序组件"""
        try:
            self.config_manager = ConfigManager(self.config_path)
            config = self.config_manager.load_config()

            self._configure_logging(self.config_manager.get_global_config())
            self.logger = get_logger('main')
            self.logger.info("开始初始化服务可用性监控系统")

            global_config = self.config_manager.get_global_config()
            self.store = self._create_store(self.config_manager.get_storage_config())
            await self._seed_services()

            # 探测 -> 事件检测 -> 告警
            window = timedelta(seconds=global_config.get('correlation_window_seconds', 120))
            self.detector = IncidentDetector(self.store, IncidentCorrelator(self.store, window))

            alerts_config = self.config_manager.get_alerts_config()
            self.dispatcher = AlertDispatcher(
                self.store,
                build_alerters(alerts_config),
                default_channels=parse_channels(alerts_config.get('default_channels')),
                default_cooldown_minutes=global_config.get('alert_cooldown_minutes', 5)
            )
            self.alert_integrator = AlertIntegrator(self.dispatcher)
            self.alert_integrator.attach(self.detector)

            self.service_monitor = ServiceMonitor(self.store, ProbeRunner(), self.detector,
                                                  self.alert_integrator)

            self.scheduler = JobScheduler(
                tick_interval=self.config_manager.get_scheduler_config().get('tick_interval', 1),
                store=self.store
            )
            self._register_jobs(global_config.get('max_concurrent_checks', 10))

            if self.config_manager.get_api_config().get('enabled', True):
                self.api_server = MonitorApiServer(self.store, self.service_monitor,
                                                   self.scheduler)

            self.logger.info(f"应用程序组件初始化完成，共 {len(config['services'])} 个服务种子")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    def _configure_logging(self, global_config: Dict[str, Any]):
        """配置日志系统

        Args:
            global_config: 全局配置
        """
        log_config = {
            'log_level': global_config.get('log_level', 'INFO'),
            'log_file': global_config.get('log_file'),
            'enable_console': True
        }
        if global_config.get('log_max_file_size'):
            log_config['max_file_size'] = global_config['log_max_file_size']
        if global_config.get('log_backup_count'):
            log_config['backup_count'] = global_config['log_backup_count']
        log_config.update({k: v for k, v in self.log_overrides.items() if v})

        log_manager.configure(log_config)

    def _create_store(self, storage_config: Dict[str, Any]) -> MonitorStore:
        if storage_config.get('backend') == 'memory':
            self.logger.warning("使用进程内存储，重启后数据会丢失")
            return MemoryStore()
        return MongoStore(storage_config['uri'], storage_config.get('database', 'uptime_monitor'))

    async def _seed_services(self):
        """把配置中的服务写入存储，保留已有服务的运行状态

        Raises:
            ValidationError: 依赖关系无效
        """
        seeds = self.config_manager.get_services()
        if not seeds:
            return

        existing = {s.id: s for s in await self.store.list_services()}
        merged = dict(existing)
        for service in seeds:
            current = existing.get(service.id)
            if current is not None:
                service.last_status = current.last_status
                service.last_checked_at = current.last_checked_at
                service.created_at = current.created_at
            merged[service.id] = service

        validate_dependency_graph(list(merged.values()))
        for service in seeds:
            await self.store.save_service(service)
        self.logger.info(f"已同步 {len(seeds)} 个服务配置")

    def _register_jobs(self, max_concurrent: int):
        jobs = {
            HealthCheckJob.name: HealthCheckJob(
                self.store, self.service_monitor, max_concurrent,
                due_tolerance=self.scheduler.tick_interval + DEFAULT_DUE_TOLERANCE),
            HeartbeatJob.name: HeartbeatJob(self.store),
            CleanupJob.name: CleanupJob(self.store, self.config_manager.get_retention_config()),
        }
        for name, handler in jobs.items():
            job_config = self.config_manager.get_job_config(name) or {}
            if job_config.get('enabled', True) is False:
                self.logger.info(f"任务 {name} 已禁用")
                continue
            self.scheduler.register_job(name, job_config['cron'], handler,
                                        run_immediately=job_config.get('run_immediately', False))

    async def start(self):
        """启动应用程序"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动服务可用性监控系统")

            await self.scheduler.start()

            if self.api_server:
                api_config = self.config_manager.get_api_config()
                await self.api_server.start(api_config.get('host', '0.0.0.0'),
                                            api_config.get('port', 8080))

            self.logger.info("服务可用性监控系统启动完成")

            # 等待关闭信号
            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止服务可用性监控系统...")
        self.is_running = False

        try:
            if self.api_server:
                await self.api_server.stop()

            # 等待正在执行的任务结束
            if self.scheduler:
                await self.scheduler.stop()

            if self.store:
                await self.store.close()

            self.logger.info("服务可用性监控系统已停止")
            log_manager.cleanup()

        except Exception as e:
            if self.logger:
                self.logger.error(f"停止应用程序时发生异常: {e}", exc_info=True)
            else:
                print(f"停止应用程序时发生异常: {e}", file=sys.stderr)

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    async def check_all_services(self) -> List[HealthCheck]:
        """立即检查所有服务（不经过调度器）"""
        services = await self.store.list_services()
        return list(await asyncio.gather(
            *(self.service_monitor.check_service(service) for service in services)))

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态

        Returns:
            应用程序状态信息
        """
        status = {
            'is_running': self.is_running,
            'config_path': self.config_path,
            'version': __version__
        }

        if self.scheduler:
            status['scheduler_stats'] = self.scheduler.get_scheduler_stats()

        if self.dispatcher:
            status['alert_channels'] = [c.value for c in self.dispatcher.alerters]

        if self.config_manager:
            status['storage_backend'] = self.config_manager.get_storage_config().get('backend')

        return status


# 全局应用程序实例
app: Optional[MonitorApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='uptime-monitor',
        description='服务可用性监控系统 - 周期性探测服务、管理故障事件并发送告警通知',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                    # 使用指定配置文件启动监控
  %(prog)s --validate config.yaml        # 验证配置文件格式
  %(prog)s --check-once config.yaml      # 执行一次健康检查后退出
  %(prog)s --version                      # 显示版本信息

支持的服务类型:
  - RESTful API
  - MongoDB
  - Elasticsearch
  - Redis

配置文件格式请参考 config/example.yaml
        """
    )

    # 位置参数：配置文件路径
    parser.add_argument(
        'config_file',
        nargs='?',
        help='YAML配置文件路径'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--validate',
        action='store_true',
        help='验证配置文件格式并退出'
    )

    parser.add_argument(
        '--check-once',
        action='store_true',
        help='执行一次健康检查后退出'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )

    parser.add_argument(
        '--log-file',
        help='日志文件路径（覆盖配置文件设置）'
    )

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        验证是否成功
    """
    try:
        print(f"正在验证配置文件: {config_path}")

        config_manager = ConfigManager(config_path)
        config_manager.load_config()
        services = config_manager.get_services()
        validate_dependency_graph(services)
        alerters = build_alerters(config_manager.get_alerts_config())

        print("✅ 配置文件验证成功!")
        print(f"   - 存储后端: {config_manager.get_storage_config().get('backend')}")
        print(f"   - 服务数量: {len(services)}")
        for service in services:
            print(f"     * {service.name} ({service.service_type.value})")
        print(f"   - 告警通道: {[a.channel.value for a in alerters] or '无'}")
        return True

    except MonitorError as e:
        print(f"❌ 配置文件验证失败: {e.message}")
        return False


async def check_once(config_path: str, log_overrides: Optional[Dict[str, Any]] = None) -> bool:
    """执行一次健康检查

    Args:
        config_path: 配置文件路径
        log_overrides: 日志配置覆盖

    Returns:
        是否所有服务都为UP
    """
    check_app = MonitorApp(config_path, log_overrides)
    try:
        print(f"正在执行健康检查: {config_path}")
        await check_app.initialize()
        results = await check_app.check_all_services()

        print(f"✅ 健康检查完成，共检查 {len(results)} 个服务:")
        all_up = True
        for check in results:
            if check.is_up:
                print(f"   ✅ {check.service_name}: UP (响应时间: {check.response_time}ms)")
            else:
                print(f"   ❌ {check.service_name}: DOWN - {check.error_message}")
                all_up = False
        return all_up

    except MonitorError as e:
        print(f"❌ 健康检查失败: {e.message}")
        return False
    finally:
        if check_app.store:
            await check_app.store.close()


async def main():
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file
    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    log_overrides = {'log_level': args.log_level, 'log_file': args.log_file}

    if args.validate:
        success = validate_config_file(config_path)
        sys.exit(0 if success else 1)

    if args.check_once:
        success = await check_once(config_path, log_overrides)
        sys.exit(0 if success else 1)

    try:
        app = MonitorApp(config_path, log_overrides)

        # 注册信号处理器
        signal.signal(signal.SIGINT, signal_handler)  # Ctrl+C
        signal.signal(signal.SIGTERM, signal_handler)  # 终止信号

        await app.initialize()

        print(f"服务可用性监控系统 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigurationError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    except MonitorError as e:
        print(f"监控系统错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def run():
    """命令行入口"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
