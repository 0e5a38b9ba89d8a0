"""HTTP接口

提供按需探测、SLA指标查询、依赖关系维护、管道预校验、关联事件查询、
失败告警查询和调度器状态等接口。
"""

import json
from typing import Any, Dict, Optional

from aiohttp import web

from ..checkers.mongodb_checker import MongoHealthChecker, validate_pipelines
from ..models.alert import AlertStatus
from ..services.dependency_graph import get_service_dependencies, update_service_dependencies
from ..services.scheduler import JobScheduler
from ..services.service_monitor import ServiceMonitor
from ..services.sla_metrics import calculate_sla_metrics, parse_time_window, window_start
from ..storage.base import MonitorStore
from ..utils.clock import utcnow
from ..utils.exceptions import (
    ConfigurationError, MonitorError, ServiceNotFoundError, ValidationError
)
from ..utils.log_manager import get_logger

logger = get_logger('api')

MAX_ALERTS_LIMIT = 500


def error_response(status: int, message: str, details: Optional[Dict[str, Any]] = None):
    return web.json_response({'error': message, 'details': details or {}}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """把异常转换为 {error, details} 结构的响应"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (ValidationError, ConfigurationError) as e:
        return error_response(400, e.message, e.details)
    except ServiceNotFoundError as e:
        return error_response(404, e.message, e.details)
    except MonitorError as e:
        logger.error(f"{request.method} {request.path} 处理失败: {e.format_error()}")
        return error_response(500, e.message, e.details)
    except Exception as e:
        logger.error(f"{request.method} {request.path} 处理时发生异常: {e}", exc_info=True)
        return error_response(500, "服务器内部错误")


async def read_json(request: web.Request) -> Any:
    """
    读取请求体JSON

    Raises:
        ValidationError: 请求体不是合法的JSON
    """
    try:
        return await request.json()
    except json.JSONDecodeError as e:
        raise ValidationError(f"请求体不是合法的JSON: {e}")


class MonitorApiServer:
    """基于 aiohttp.web 的接口服务

    调度器、存储和探测流水线都由启动流程创建后注入。
    """

    def __init__(self, store: MonitorStore, monitor: ServiceMonitor,
                 scheduler: Optional[JobScheduler] = None):
        self.store = store
        self.monitor = monitor
        self.scheduler = scheduler
        self.runner: Optional[web.AppRunner] = None
        self.logger = logger

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_post('/api/services/{service_id}/check', self.check_service)
        app.router.add_get('/api/services/{service_id}/metrics', self.get_metrics)
        app.router.add_get('/api/services/{service_id}/dependencies', self.get_dependencies)
        app.router.add_put('/api/services/{service_id}/dependencies', self.put_dependencies)
        app.router.add_post('/api/pipelines/validate', self.validate_pipelines)
        app.router.add_get('/api/incidents/correlated/{correlation_id}', self.get_correlated)
        app.router.add_get('/api/alerts', self.list_alerts)
        app.router.add_get('/api/scheduler', self.get_scheduler_status)
        return app

    async def start(self, host: str = '0.0.0.0', port: int = 8080):
        """启动HTTP服务"""
        self.runner = web.AppRunner(self.create_app())
        await self.runner.setup()
        site = web.TCPSite(self.runner, host, port)
        await site.start()
        self.logger.info(f"HTTP接口已启动: http://{host}:{port}")

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            self.logger.info("HTTP接口已停止")

    async def check_service(self, request: web.Request) -> web.Response:
        """按需探测：写入探测记录、执行事件检测并返回本次结果"""
        check = await self.monitor.check_service_by_id(request.match_info['service_id'])
        return web.json_response(check.to_response())

    async def get_metrics(self, request: web.Request) -> web.Response:
        service_id = request.match_info['service_id']
        time_window = parse_time_window(request.query.get('window', '30d'))

        service = await self.store.get_service(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)

        now = utcnow()
        start = window_start(time_window, now, service.created_at)
        incidents = await self.store.list_incidents(service_id, overlapping_since=start)
        return web.json_response(calculate_sla_metrics(service, incidents, time_window, now))

    async def get_dependencies(self, request: web.Request) -> web.Response:
        result = await get_service_dependencies(self.store, request.match_info['service_id'])
        return web.json_response(result)

    async def put_dependencies(self, request: web.Request) -> web.Response:
        body = await read_json(request)
        dependencies = body.get('dependencies') if isinstance(body, dict) else body
        service = await update_service_dependencies(
            self.store, request.match_info['service_id'], dependencies)
        return web.json_response({'id': service.id, 'dependencies': service.dependencies})

    async def validate_pipelines(self, request: web.Request) -> web.Response:
        """在目标库上试运行管道（每条限制返回1条），报告每条管道的结果"""
        body = await read_json(request)
        if not isinstance(body, dict):
            raise ValidationError("请求体必须是对象")
        validate_pipelines(body.get('pipelines'))

        checker = MongoHealthChecker('pipeline-validation', {
            'connection_string': body.get('connection_string'),
            'database': body.get('database'),
            'pipelines': body.get('pipelines') or [],
            'timeout': body.get('timeout', 5000),
        })
        checker.validate_config()
        results = await checker.execute_pipelines()
        return web.json_response({
            'valid': all(r['success'] for r in results),
            'results': results
        })

    async def get_correlated(self, request: web.Request) -> web.Response:
        incidents = await self.store.list_correlated_incidents(
            request.match_info['correlation_id'])
        return web.json_response({'incidents': [i.to_response() for i in incidents]})

    async def list_alerts(self, request: web.Request) -> web.Response:
        status = request.query.get('status')
        try:
            alert_status = AlertStatus(status) if status else None
        except ValueError:
            raise ValidationError(f"无效的告警状态: {status}", field='status')
        try:
            limit = min(int(request.query.get('limit', 100)), MAX_ALERTS_LIMIT)
        except ValueError:
            raise ValidationError("limit 必须是整数", field='limit')

        alerts = await self.store.list_alerts(status=alert_status,
                                              service_id=request.query.get('service_id'),
                                              limit=limit)
        return web.json_response({'alerts': [a.to_response() for a in alerts]})

    async def get_scheduler_status(self, request: web.Request) -> web.Response:
        if self.scheduler is None:
            return error_response(503, "调度器未启用")
        return web.json_response(self.scheduler.get_scheduler_stats())
