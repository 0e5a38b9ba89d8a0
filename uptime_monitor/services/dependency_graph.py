"""服务依赖图

依赖边 A -> B 表示服务 A 依赖服务 B。更新依赖时在这里校验：
不允许自引用、不允许引用不存在的服务、不允许形成环。
关联分析只遍历通过校验的无环图。
"""

from typing import Dict, Iterable, List, Mapping, Set

from ..models.service import Service
from ..storage.base import MonitorStore
from ..utils.exceptions import ServiceNotFoundError, ValidationError
from ..utils.log_manager import get_logger

logger = get_logger('dependency_graph')


def build_dependents_graph(services: Iterable[Service]) -> Dict[str, List[str]]:
    """
    构建反向依赖图

    Args:
        services: 服务列表

    Returns:
        Dict[str, List[str]]: 服务id -> 直接依赖它的服务id列表
    """
    graph: Dict[str, List[str]] = {}
    for service in services:
        graph.setdefault(service.id, [])
        for dependency_id in service.dependencies:
            graph.setdefault(dependency_id, []).append(service.id)
    return graph


def get_downstream_services(service_id: str, dependents: Mapping[str, List[str]]) -> List[str]:
    """返回所有直接或间接依赖 service_id 的服务，按广度优先顺序"""
    result: List[str] = []
    seen: Set[str] = {service_id}
    queue = list(dependents.get(service_id, []))
    while queue:
        current = queue.pop(0)
        if current in seen:
            continue
        seen.add(current)
        result.append(current)
        queue.extend(dependents.get(current, []))
    return result


def has_circular_dependency(service_id: str, adjacency: Mapping[str, List[str]]) -> bool:
    """从 service_id 出发沿依赖边做深度优先搜索，遇到递归栈中的节点即存在环"""
    visited: Set[str] = set()
    stack: Set[str] = set()

    def visit(node: str) -> bool:
        if node in stack:
            return True
        if node in visited:
            return False
        visited.add(node)
        stack.add(node)
        for neighbour in adjacency.get(node, []):
            if visit(neighbour):
                return True
        stack.discard(node)
        return False

    return visit(service_id)


def validate_dependencies(service_id: str, dependencies: object,
                          services: Iterable[Service]) -> List[str]:
    """
    校验服务的新依赖列表

    Args:
        service_id: 目标服务id
        dependencies: 新的依赖id列表
        services: 当前所有未删除的服务

    Returns:
        List[str]: 校验通过的依赖列表

    Raises:
        ValidationError: 格式错误、自引用、引用不存在的服务或形成环
    """
    if not isinstance(dependencies, list):
        raise ValidationError("dependencies 必须是数组", field='dependencies')
    for dependency_id in dependencies:
        if not isinstance(dependency_id, str) or not dependency_id:
            raise ValidationError(f"依赖id必须是非空字符串: {dependency_id!r}",
                                  field='dependencies')
    if len(set(dependencies)) != len(dependencies):
        raise ValidationError("dependencies 中存在重复的服务id", field='dependencies')
    if service_id in dependencies:
        raise ValidationError("服务不能依赖自身", field='dependencies')

    adjacency = {s.id: list(s.dependencies) for s in services}
    for dependency_id in dependencies:
        if dependency_id not in adjacency:
            raise ValidationError(f"服务不存在: {dependency_id}", field='dependencies')

    adjacency[service_id] = list(dependencies)
    if has_circular_dependency(service_id, adjacency):
        raise ValidationError("检测到循环依赖", field='dependencies')
    return list(dependencies)


def validate_dependency_graph(services: List[Service]) -> None:
    """
    校验整组服务的依赖关系（加载YAML种子配置时使用）

    Raises:
        ValidationError: 任一服务的依赖无效
    """
    for service in services:
        validate_dependencies(service.id, list(service.dependencies), services)


async def update_service_dependencies(store: MonitorStore, service_id: str,
                                      dependencies: object) -> Service:
    """
    更新服务依赖（依赖更新接口的实现）

    Raises:
        ServiceNotFoundError: 目标服务不存在
        ValidationError: 依赖列表无效
    """
    service = await store.get_service(service_id)
    if service is None:
        raise ServiceNotFoundError(service_id)

    services = await store.list_services()
    validated = validate_dependencies(service_id, dependencies, services)
    await store.update_service_dependencies(service_id, validated)
    service.dependencies = validated
    logger.info(f"服务 {service.name} 的依赖已更新: {validated}")
    return service


async def get_service_dependencies(store: MonitorStore, service_id: str) -> Dict[str, List[Dict[str, str]]]:
    """返回服务的直接依赖和直接被依赖关系"""
    service = await store.get_service(service_id)
    if service is None:
        raise ServiceNotFoundError(service_id)
    services = {s.id: s for s in await store.list_services()}
    dependents = build_dependents_graph(services.values())

    def describe(ids: Iterable[str]) -> List[Dict[str, str]]:
        return [{'id': i, 'name': services[i].name} for i in ids if i in services]

    return {
        'dependencies': describe(service.dependencies),
        'dependents': describe(dependents.get(service_id, []))
    }
